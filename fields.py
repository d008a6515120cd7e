#!/usr/bin/env python3

import copy
import logging
from typing import Any, NamedTuple
from pycparser.c_ast import Decl, ID, UnaryOp, BinaryOp, ArrayRef, Assignment, ArrayDecl, PtrDecl
from ctree import get_typedecl, rename, int_literal, sizeof, make_typename, make_call
from aggregates import VALUE, POINTER, ARRAY

log = logging.getLogger('structdecomp.fields')


def field_type(binding, field):
    t = rename(field.type, binding.field_name(field))
    # qualifiers of the aggregate apply to each member itself
    quals = get_typedecl(binding.decl.type).quals
    member = t
    while isinstance(member, ArrayDecl):
        member = member.type
    member.quals = member.quals + [q for q in quals if q not in member.quals]

    if binding.kind == POINTER:
        quals = binding.decl.type.quals if isinstance(binding.decl.type, PtrDecl) else []
        # array fields decay to a pointer to their first element
        if isinstance(t, ArrayDecl):
            t = t.type
        return PtrDecl(quals=list(quals), type=t)
    if binding.kind == ARRAY:
        dim = binding.decl.type.dim
        dim = int_literal(binding.size) if dim is None else copy.deepcopy(dim)
        return ArrayDecl(type=t, dim=dim, dim_quals=[])
    assert binding.kind == VALUE, binding.kind
    return t


def synthesize(binding):
    """
    >>> from pycparser import CParser
    >>> from ctree import CGenerator, Tree
    >>> from aggregates import Registry
    >>> registry = Registry(Tree(CParser().parse('''
    ... struct S {int a; char *s; double v[4];};
    ... const struct S x; struct S * const p; static struct S arr[2];
    ... ''')))
    >>> for binding in registry.bindings(registry.aggregates[0])[0]:
    ...     for decl in synthesize(binding):
    ...         print(CGenerator().visit(decl))
    const int x_a
    char * const x_s
    const double x_v[4]
    int * const p_a
    char ** const p_s
    double * const p_v
    static int arr_a[2]
    static char *arr_s[2]
    static double arr_v[2][4]
    """
    decl = binding.decl
    storage = [] if binding.is_param else decl.storage
    decls = []
    for field in binding.aggregate.fields:
        decls.append(Decl(
            name=binding.field_name(field), quals=[],
            align=[], storage=list(storage), funcspec=[],
            type=field_type(binding, field), init=None, bitsize=None))
    log.debug('%s: %s -> %s', decl.coord, decl.name, ', '.join(d.name for d in decls))
    return decls


class Operand(NamedTuple):
    """An aggregate binding as written in an expression: bare, under `*` or
    `&`, indexed (`[]`), or the address of an element (`&[]`)."""
    binding: Any
    wrap: Any = None
    subscript: Any = None

    @property
    def shape(self):
        return self.binding.kind, self.wrap

    @property
    def denotes(self):
        if self.shape in OBJECTS:
            return 'object'
        if self.shape in ADDRESSES:
            return 'address'
        return None

    def field_id(self, field):
        return ID(self.binding.field_name(field))

    def object(self, field):
        name = self.field_id(field)
        kind, wrap = self.shape
        if wrap is None:
            return name
        if wrap == '*':
            return name if field.is_array else UnaryOp('*', name)
        if kind == POINTER and field.is_array:
            # rows of a decayed array field are laid out back to back
            stride = BinaryOp('*', copy.deepcopy(self.subscript), copy.deepcopy(field.type.dim))
            return BinaryOp('+', name, stride)
        return ArrayRef(name, copy.deepcopy(self.subscript))

    def address(self, field):
        name = self.field_id(field)
        kind, wrap = self.shape
        if wrap == '&[]':
            element = self._replace(wrap='[]').object(field)
            return element if field.is_array else UnaryOp('&', element)
        if kind == POINTER:
            return name
        if kind == ARRAY:
            return ArrayRef(name, int_literal(0)) if field.is_array else name
        return name if field.is_array else UnaryOp('&', name)

    def expression(self, field):
        if self.denotes == 'object':
            return self.object(field)
        return self.address(field)


OBJECTS = {(VALUE, None), (POINTER, '*'), (POINTER, '[]'), (ARRAY, '[]')}
ADDRESSES = {(POINTER, None), (ARRAY, None), (VALUE, '&'), (POINTER, '&[]'), (ARRAY, '&[]')}


def unwrap(expr):
    """The wrapper, subscript and symbol node of an operand expression.

    >>> from pycparser import CParser
    >>> init = lambda s: CParser().parse(s).ext[0].init
    >>> [unwrap(init(s))[0] for s in ('int *x = &a[i];', 'int x = a[i];', 'int x = *p;', 'int x = a;')]
    ['&[]', '[]', '*', None]
    """
    if isinstance(expr, UnaryOp) and expr.op == '&' and isinstance(expr.expr, ArrayRef):
        return '&[]', expr.expr.subscript, expr.expr.name
    if isinstance(expr, UnaryOp) and expr.op in ('*', '&'):
        return expr.op, None, expr.expr
    if isinstance(expr, ArrayRef):
        return '[]', expr.subscript, expr.name
    return None, None, expr


def make_operand(binding, wrap=None, subscript=None):
    if binding.kind == ARRAY and wrap == '*':
        return Operand(binding, '[]', int_literal(0))
    return Operand(binding, wrap, subscript)


def copy_statement(registry, field, target, source):
    if field.is_array:
        registry.headers.add(registry.options.copy_header)
        return make_call(registry.options.copy_function, target, source,
                         sizeof(make_typename(field.type)))
    return Assignment('=', target, source)
