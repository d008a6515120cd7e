#!/usr/bin/env python3

import os
import sys
import logging
from io import StringIO
from pcpp.preprocessor import Preprocessor, OutputDirective, Action
from pycparser import CParser
from pycparser.c_ast import Decl, Struct, Union, Enum
from ctree import Tree, CGenerator, show, get_typedecl
from aggregates import Options, Registry
from fields import synthesize
from initializers import initialize
from references import ReferenceRewriter
from params import decompose_param

log = logging.getLogger('structdecomp.driver')
cli_log = logging.getLogger('structdecomp.cli')


class StructDecomposer:

    def __init__(self, ast, options=Options(), names=None):
        self.tree = Tree(ast)
        self.registry = Registry(self.tree, options, names)
        self.rewriter = ReferenceRewriter(self.registry)

    @property
    def headers(self):
        return self.registry.headers

    def decompose(self, aggregate):
        variables, params = self.registry.bindings(aggregate)
        log.info('%s: %d variables, %d parameters', aggregate.name, len(variables), len(params))
        decomposed = []
        for binding in variables:
            if self.tree.attached(binding.decl):
                self.decompose_binding(binding)
                decomposed.append(binding.name)
        for binding in params:
            if self.tree.attached(binding.decl):
                decompose_param(self.registry, self.rewriter, binding)
                decomposed.append(binding.name)
        return decomposed

    def decompose_binding(self, binding):
        tree = self.tree
        decls = synthesize(binding)
        before, after = initialize(self.registry, binding, decls)
        tree.insert_after(binding.decl, *decls, *after)
        tree.insert_before(binding.decl, *before)
        self.registry.record(binding)
        self.rewriter.rewrite(binding)
        self.detach(binding)

    def detach(self, binding):
        decl = binding.decl
        t = get_typedecl(decl.type).type
        if (isinstance(t, (Struct, Union)) and t.decls is not None or
                isinstance(t, Enum) and t.values is not None):
            # the declaration also defines the type
            self.tree.replace(decl, Decl(None, [], [], [], [], t, None, None))
        else:
            self.tree.detach(decl)

    def decompose_struct(self, struct):
        """
        >>> ast = CParser().parse('struct A {int x;}; struct B {int y;}; struct A a; struct B b;')
        >>> StructDecomposer(ast).decompose_struct(ast.ext[1].type)
        ['struct B']
        >>> show(ast)
        struct A
        {
          int x;
        };
        struct B
        {
          int y;
        };
        struct A a;
        int b_y;
        """
        for aggregate in self.registry.aggregates:
            if aggregate.struct is struct:
                self.decompose(aggregate)
                return [aggregate.name]
        log.warning('%s: struct %s is not decomposable', struct.coord, struct.name)
        return []

    def decompose_by_name(self, name):
        aggregate = self.registry.find(name)
        if aggregate is None:
            log.warning('no decomposable struct named %s', name)
            return []
        self.decompose(aggregate)
        return [aggregate.name]

    def decompose_all(self):
        names = []
        for aggregate in self.registry.aggregates:
            self.decompose(aggregate)
            names.append(aggregate.name)
        return names


def decompose_source(s, *names):
    """
    >>> decompose_source('struct S {int a; double b;}; struct S g = {1, 2.0}; int f() { return g.a; }')
    struct S
    {
      int a;
      double b;
    };
    int g_a = 1;
    double g_b = 2.0;
    int f()
    {
      return g_a;
    }
    <BLANKLINE>
    >>> decompose_source('''
    ... struct T {int v;};
    ... void f() { struct T a, b; a.v = 1; b = a; }
    ... void g() { int a = 0; a++; }
    ... ''')
    struct T
    {
      int v;
    };
    void f()
    {
      int a_v;
      int b_v;
      a_v = 1;
      b_v = a_v;
    }
    <BLANKLINE>
    void g()
    {
      int a = 0;
      a++;
    }
    <BLANKLINE>
    >>> decompose_source('''
    ... struct A {int x;} a = {1};
    ... int f() { int r = a.x; { int a = 2; r += a; } { struct A a = {3}; r += a.x; } return r; }
    ... ''')
    struct A
    {
      int x;
    };
    int a_x = 1;
    int f()
    {
      int r = a_x;
      {
        int a = 2;
        r += a;
      }
      {
        int a_x = 3;
        r += a_x;
      }
      return r;
    }
    <BLANKLINE>
    >>> decompose_source('struct A {int x;} a = {1}; int f() { int r = a.x; int a = 2; return r + a; }')
    struct A
    {
      int x;
    };
    int a_x = 1;
    int f()
    {
      int r = a_x;
      int a = 2;
      return r + a;
    }
    <BLANKLINE>
    """
    ast = CParser().parse(s)
    decomposer = StructDecomposer(ast)
    if names:
        for name in names:
            decomposer.decompose_by_name(name)
    else:
        decomposer.decompose_all()
    show(ast)


def diagnose(s, *names):
    """decompose_source with the warnings printed before the output.

    >>> diagnose('struct S {int a;}; struct S make(); void f() { struct S x = make(); struct S y = {2}; }')  # doctest: +ELLIPSIS
    [structdecomp.initializers] WARNING: ...: unsupported initializer of x, fields left uninitialized
    struct S
    {
      int a;
    };
    struct S make();
    void f()
    {
      int x_a;
      int y_a = 2;
    }
    <BLANKLINE>
    >>> diagnose('struct S {int a;}; void f(int n) { struct S m[2][2]; struct S v[n]; struct S ok; ok.a = n; }')  # doctest: +ELLIPSIS
    [structdecomp.registry] WARNING: ...: m is a multi-dimensional array, skipped
    [structdecomp.registry] WARNING: ...: v is a variable-length array, skipped
    struct S
    {
      int a;
    };
    void f(int n)
    {
      struct S m[2][2];
      struct S v[n];
      int ok_a;
      ok_a = n;
    }
    <BLANKLINE>
    >>> diagnose('struct S {int a;}; struct R {int b;}; void f() { struct S *p = malloc(sizeof(struct R)); }', 'S')  # doctest: +ELLIPSIS
    [structdecomp.initializers] WARNING: ...: unsupported initializer of p, fields left uninitialized
    struct S
    {
      int a;
    };
    struct R
    {
      int b;
    };
    void f()
    {
      int *p_a;
    }
    <BLANKLINE>
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter('[%(name)s] %(levelname)s: %(message)s'))
    logger = logging.getLogger('structdecomp')
    logger.addHandler(handler)
    try:
        decompose_source(s, *names)
    finally:
        logger.removeHandler(handler)


class IncludeRecorder(Preprocessor):

    def __init__(self):
        super().__init__()
        self.missing = []

    def on_include_not_found(self, is_malformed, is_system_include, curdir, includepath):
        if is_system_include:
            line = f'#include <{includepath}>'
        else:
            line = f'#include "{includepath}"'
        cli_log.debug('%s not found, kept in the output', includepath)
        if line not in self.missing:
            self.missing.append(line)
        raise OutputDirective(Action.IgnoreAndRemove)

    def on_comment(self, tok):
        return False


def mtime(filename):
    try:
        return os.stat(filename).st_mtime
    except FileNotFoundError:
        pass


def preprocess(input, include_dirs=(), defines=()):
    cpp = IncludeRecorder()
    cpp.add_path(os.path.dirname(os.path.abspath(input)))
    for path in include_dirs:
        cpp.add_path(path)
    for define in defines:
        name, _, value = define.partition('=')
        cpp.define(f'{name} {value or 1}')

    with open(input, 'r') as f:
        code = f.read()
    cpp.parse(code, input)

    buf = StringIO()
    cpp.write(buf)
    assert cpp.return_code == 0, "preprocessor error"
    return buf.getvalue(), cpp.missing


def main(input, output=None, structs=(), include_dirs=(), defines=(), dump_ast=False, options=Options()):
    if output is not None:
        time_i = mtime(input)
        assert time_i is not None, f"{input} not found"
        time_o = mtime(output)
        if time_o is not None and time_i < time_o:
            cli_log.info('%s is up to date', output)
            return

    code, includes = preprocess(input, include_dirs, defines)
    parser = CParser()
    ast = parser.parse(code, input)
    if dump_ast:
        from cast import dump
        dump(ast)
        return

    decomposer = StructDecomposer(ast, options)
    if structs:
        names = [n for name in structs for n in decomposer.decompose_by_name(name)]
    else:
        names = decomposer.decompose_all()
    cli_log.info('%s: decomposed %s', input, ', '.join(names) or 'nothing')

    for header in sorted(decomposer.headers):
        line = f'#include <{header}>'
        if line not in includes:
            includes.append(line)
    generator = CGenerator(reduce_parentheses=True)
    ccode = ''.join(line + '\n' for line in includes) + generator.visit(ast)

    if output is None:
        print(ccode, end='')
    else:
        with open(output, "w") as f:
            f.write(ccode)


def cli():
    import argparse
    parser = argparse.ArgumentParser(prog=__file__, description='Decompose C structs into one variable per field')
    parser.add_argument('-o', '--output')
    parser.add_argument('-s', '--struct', action='append', default=[], dest='structs')
    parser.add_argument('-I', action='append', default=[], dest='include_dirs')
    parser.add_argument('-D', action='append', default=[], dest='defines')
    parser.add_argument('--dump-ast', action='store_true')
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('-q', '--quiet', action='store_true')
    verbosity.add_argument('-v', '--verbose', action='store_true')
    parser.add_argument('input')
    args = parser.parse_args()

    level = logging.WARNING if args.quiet else logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(format='[%(name)s] %(levelname)s: %(message)s', level=level)
    main(args.input, args.output, args.structs, args.include_dirs, args.defines, args.dump_ast)


if __name__ == '__main__':
    cli()
