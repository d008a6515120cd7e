#!/usr/bin/env python3

"""
>>> from decompose import decompose_source
>>> decompose_source('struct S {int a; double b; char *c;}; void f() { struct S x = {1, 2.5, "s"}; }')
struct S
{
  int a;
  double b;
  char *c;
};
void f()
{
  int x_a = 1;
  double x_b = 2.5;
  char *x_c = "s";
}
<BLANKLINE>
>>> decompose_source('struct S {int a; int b;}; void f() { struct S x = {.b = 2}; struct S *p = &(struct S){3}; }')
struct S
{
  int a;
  int b;
};
void f()
{
  int x_a;
  int x_b = 2;
  int p_a_init = 3;
  int *p_a = &p_a_init;
  int *p_b;
}
<BLANKLINE>
>>> decompose_source('struct S {int a; char *c;}; void f() { struct S *p = (struct S *) malloc(sizeof(struct S)); struct S *q = calloc(4, sizeof(*q)); }')
struct S
{
  int a;
  char *c;
};
void f()
{
  int *p_a = (int *) malloc(sizeof(int));
  char **p_c = (char **) malloc(sizeof(char *));
  int *q_a = (int *) calloc(4, sizeof(int));
  char **q_c = (char **) calloc(4, sizeof(char *));
}
<BLANKLINE>
>>> decompose_source('typedef struct U {int v; int w[2];} T; void f() { T a; T b = a; T *p = &a; T c = *p; }')
typedef struct U
{
  int v;
  int w[2];
} T;
void f()
{
  int a_v;
  int a_w[2];
  int b_v = a_v;
  int b_w[2];
  memcpy(b_w, a_w, sizeof(int [2]));
  int *p_v = &a_v;
  int *p_w = a_w;
  int c_v = *p_v;
  int c_w[2];
  memcpy(c_w, p_w, sizeof(int [2]));
}
<BLANKLINE>
>>> decompose_source('struct T {int v;}; void f() { struct T arr[3] = {{1}, {2}, {3}}; }')
struct T
{
  int v;
};
void f()
{
  int arr_v[3];
  arr_v[0] = 1;
  arr_v[1] = 2;
  arr_v[2] = 3;
}
<BLANKLINE>
>>> decompose_source('struct T {int v; int w;}; struct T arr[] = {{1, 2}, [2] = {.w = 3}};')
struct T
{
  int v;
  int w;
};
int arr_v[3] = {[0] = 1};
int arr_w[3] = {[0] = 2, [2] = 3};
>>> decompose_source('struct S {int a; int w[2];}; void f(int i) { struct S arr[3]; struct S t = arr[i]; struct S *q = &arr[1]; q->a = 4; }')
struct S
{
  int a;
  int w[2];
};
void f(int i)
{
  int arr_a[3];
  int arr_w[3][2];
  int t_a = arr_a[i];
  int t_w[2];
  memcpy(t_w, arr_w[i], sizeof(int [2]));
  int *q_a = &arr_a[1];
  int *q_w = arr_w[1];
  *q_a = 4;
}
<BLANKLINE>
"""

import copy
import logging
from pycparser.c_ast import (
    ID, Constant, UnaryOp, BinaryOp, Cast, ArrayRef, Assignment, FuncCall,
    ExprList, InitList, NamedInitializer, CompoundLiteral, Typename)
from ctree import (
    int_value, int_literal, sizeof, make_decl, make_typename, pointer_to,
    call_name, strip_cast)
from aggregates import VALUE, POINTER, ARRAY, modifiers
from fields import make_operand, unwrap, copy_statement

log = logging.getLogger('structdecomp.initializers')


def is_string(node):
    return isinstance(node, Constant) and node.type == 'string'


def field_values(aggregate, init):
    """Field index to value of a brace list, positional or designated.

    >>> from pycparser import CParser
    >>> from ctree import Tree
    >>> from aggregates import Registry
    >>> S = Registry(Tree(CParser().parse("struct S {int a, b, c;};"))).aggregates[0]
    >>> values = lambda s: {i: v.value for i, v in field_values(S, CParser().parse(s).ext[0].init).items()}
    >>> values('int x = {1, 2};')
    {0: '1', 1: '2'}
    >>> values('int x = {.c = 3, .a = 1, 2};')
    {2: '3', 0: '1', 1: '2'}
    >>> field_values(S, CParser().parse('int x = {1, 2, 3, 4};').ext[0].init) is None
    True
    """
    values = {}
    cursor = 0
    for expr in init.exprs:
        if isinstance(expr, NamedInitializer):
            if len(expr.name) != 1 or not isinstance(expr.name[0], ID):
                return None
            cursor = aggregate.index(expr.name[0].name)
            if cursor is None:
                return None
            expr = expr.expr
        if cursor >= len(aggregate.fields):
            return None
        field = aggregate.fields[cursor]
        if field.is_array and not (isinstance(expr, InitList) or is_string(expr)):
            # brace elision across an array member
            return None
        values[cursor] = expr
        cursor += 1
    return values


def is_aggregate_size(registry, binding, node):
    if not (isinstance(node, UnaryOp) and node.op == 'sizeof'):
        return False
    expr = node.expr
    if isinstance(expr, Typename):
        return (modifiers(expr.type) == [] and
                registry.aggregate_of(expr.type) is binding.aggregate)
    wrap, _, expr = unwrap(expr)
    if not isinstance(expr, ID):
        return False
    target = registry.lookup(node, expr.name)
    if target is None or target.aggregate is not binding.aggregate:
        return False
    return make_operand(target, wrap).denotes == 'object'


def allocation(registry, binding, expr):
    """One allocator call per field for a heap allocation of the binding's
    aggregate, or None when `expr` is not one."""
    call = strip_cast(expr)
    if call_name(call) not in registry.options.allocators or call.args is None:
        return None
    args = call.args.exprs
    size = args[-1]
    factor = None
    if isinstance(size, BinaryOp) and size.op == '*':
        if is_aggregate_size(registry, binding, size.left):
            factor = size.right
        elif is_aggregate_size(registry, binding, size.right):
            factor = size.left
        else:
            return None
        if int_value(factor) is None:
            log.warning('%s: allocation of %s scaled by a non-literal factor is not supported',
                        expr.coord, binding.name)
            return None
    elif int_value(size) is not None and len(args) == 1:
        log.warning('%s: %s allocated with literal size %s, assumed to hold one %s',
                    expr.coord, binding.name, size.value, binding.aggregate.name)
    elif not is_aggregate_size(registry, binding, size):
        return None

    calls = []
    for field in binding.aggregate.fields:
        unit = sizeof(make_typename(field.type))
        if factor is not None:
            unit = BinaryOp('*', unit, copy.deepcopy(factor))
        call_args = [copy.deepcopy(arg) for arg in args[:-1]] + [unit]
        calls.append(Cast(make_typename(pointer_to(field.type)),
                          FuncCall(copy.deepcopy(call.name), ExprList(call_args))))
    return calls


class Strategy:

    def __init__(self, registry):
        self.registry = registry

    def validate(self, binding):
        raise NotImplementedError

    def apply(self, binding, decls):
        raise NotImplementedError


class DirectList(Strategy):

    def validate(self, binding):
        init = binding.decl.init
        if binding.kind != VALUE or not isinstance(init, InitList):
            return False
        self.values = field_values(binding.aggregate, init)
        return self.values is not None

    def apply(self, binding, decls):
        for i, decl in enumerate(decls):
            if i in self.values:
                decl.init = copy.deepcopy(self.values[i])
        return [], []


class PointerList(Strategy):

    def validate(self, binding):
        init = binding.decl.init
        if (binding.kind != POINTER or
                not (isinstance(init, UnaryOp) and init.op == '&') or
                not isinstance(init.expr, CompoundLiteral)):
            return False
        literal = init.expr
        if (modifiers(literal.type.type) != [] or
                self.registry.aggregate_of(literal.type.type) is not binding.aggregate):
            return False
        self.values = field_values(binding.aggregate, literal.init)
        return self.values is not None

    def apply(self, binding, decls):
        before = []
        for i, (field, decl) in enumerate(zip(binding.aggregate.fields, decls)):
            if i not in self.values:
                continue
            holder = self.registry.names.get(f'{decl.name}_init')
            before.append(make_decl(holder, field.type, copy.deepcopy(self.values[i]),
                                    binding.decl.storage))
            decl.init = ID(holder) if field.is_array else UnaryOp('&', ID(holder))
        return before, []


class HeapAllocation(Strategy):

    def validate(self, binding):
        if binding.kind != POINTER:
            return False
        self.calls = allocation(self.registry, binding, binding.decl.init)
        return self.calls is not None

    def apply(self, binding, decls):
        for decl, call in zip(decls, self.calls):
            decl.init = call
        return [], []


COPIES = {
    (VALUE, None, VALUE),
    (VALUE, '*', POINTER),
    (POINTER, None, POINTER),
    (POINTER, None, ARRAY),
    (POINTER, '&', VALUE),
    (VALUE, '[]', ARRAY),
    (VALUE, '[]', POINTER),
    (POINTER, '&[]', ARRAY),
    (POINTER, '&[]', POINTER),
}


class AggregateCopy(Strategy):

    def validate(self, binding):
        wrap, subscript, init = unwrap(binding.decl.init)
        if not isinstance(init, ID):
            return False
        source = self.registry.lookup(init, init.name)
        if source is None or source.aggregate is not binding.aggregate:
            return False
        if (binding.kind, wrap, source.kind) not in COPIES:
            return False
        self.source = make_operand(source, wrap, subscript)
        return True

    def apply(self, binding, decls):
        after = []
        for field, decl in zip(binding.aggregate.fields, decls):
            if binding.kind == POINTER:
                decl.init = self.source.address(field)
            elif not field.is_array:
                decl.init = self.source.object(field)
            elif binding.is_global:
                log.warning('%s: array field %s of %s cannot be copied at file scope',
                            binding.decl.coord, field.name, binding.name)
            else:
                after.append(copy_statement(self.registry, field, ID(decl.name),
                                            self.source.object(field)))
        return [], after


class ArrayOfAggregates(Strategy):

    def validate(self, binding):
        init = binding.decl.init
        if binding.kind != ARRAY or not isinstance(init, InitList):
            return False
        self.elements = {}
        cursor = 0
        for expr in init.exprs:
            if isinstance(expr, NamedInitializer):
                if len(expr.name) != 1:
                    return False
                cursor = int_value(expr.name[0])
                if cursor is None:
                    return False
                expr = expr.expr
            if not isinstance(expr, InitList):
                return False
            values = field_values(binding.aggregate, expr)
            if values is None:
                return False
            self.elements[cursor] = values
            cursor += 1
        return True

    def apply(self, binding, decls):
        indices = sorted(self.elements)
        if binding.is_global or 'static' in binding.decl.storage:
            # no statements at file scope, and statics are initialized once
            for i, decl in enumerate(decls):
                items = [NamedInitializer([int_literal(index)], copy.deepcopy(self.elements[index][i]))
                         for index in indices if i in self.elements[index]]
                if items:
                    decl.init = InitList(items)
            return [], []

        after = []
        for index in indices:
            values = self.elements[index]
            for i, decl in enumerate(decls):
                if i in values:
                    target = ArrayRef(ID(decl.name), int_literal(index))
                    after.extend(self.assignments(binding, target, values[i]))
        return [], after

    def assignments(self, binding, target, value):
        if isinstance(value, InitList):
            statements = []
            cursor = 0
            for item in value.exprs:
                if isinstance(item, NamedInitializer):
                    cursor = int_value(item.name[0]) if len(item.name) == 1 else None
                    if cursor is None:
                        log.warning('%s: unsupported element designator in %s',
                                    item.coord, binding.name)
                        return statements
                    item = item.expr
                statements.extend(self.assignments(binding, ArrayRef(target, int_literal(cursor)), item))
                cursor += 1
            return statements
        if is_string(value):
            log.warning('%s: string initializer of an array field of %s is not supported',
                        value.coord, binding.name)
            return []
        return [Assignment('=', target, copy.deepcopy(value))]


STRATEGIES = (DirectList, PointerList, HeapAllocation, AggregateCopy, ArrayOfAggregates)


def initialize(registry, binding, decls):
    """Sets the initializers of the field declarations; returns statements
    to place before the original declaration and after the new ones."""
    if binding.decl.init is None:
        return [], []
    for strategy in STRATEGIES:
        candidate = strategy(registry)
        if candidate.validate(binding):
            log.info('%s: %s initialized as %s', binding.decl.coord, binding.name, strategy.__name__)
            return candidate.apply(binding, decls)
    log.warning('%s: unsupported initializer of %s, fields left uninitialized',
                binding.decl.coord, binding.name)
    return [], []
