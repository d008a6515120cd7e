#!/usr/bin/env python3

import copy
from pycparser import c_generator
from pycparser.c_ast import (
    Node, ID, Constant, Cast, UnaryOp, FuncCall, ExprList, Compound, FileAST,
    Case, Default, EmptyStatement, Decl, TypeDecl, PtrDecl, ArrayDecl, Typedef,
    Typename, Struct, IdentifierType, StructRef, NamedInitializer)

STATEMENT_SLOTS = ('iftrue', 'iffalse', 'stmt')
STATEMENT_LISTS = ('block_items', 'ext', 'stmts')


class BaseVisitor:

    def visit(self, node):
        method = 'visit_' + node.__class__.__name__
        return getattr(self, method, self.visit_default)(node)

    def visit_default(self, node):
        assert False, f'Not implemented {node.__class__.__name__}'


class CGenerator(c_generator.CGenerator):

    def _is_simple_node(self, n):
        return (super()._is_simple_node(n) or
                isinstance(n, UnaryOp) and n.op == 'sizeof')


def show(node):
    print(CGenerator(reduce_parentheses=True).visit(node), end='')


class Tree:
    """
    >>> from pycparser import CParser
    >>> tree = Tree(CParser().parse('int f(int a) { a = a + 1; if (a) a = 2; return a; }'))
    >>> refs = tree.search(tree.ast, ID, lambda n: n.name == 'a')
    >>> len(refs)
    5
    >>> tree.replace(refs[0], ID('b'))
    >>> tree.attached(refs[0])
    False
    >>> tree.insert_after(tree.statement(refs[3]), tree.copy(tree.statement(refs[3])))
    >>> tree.detach(tree.statement(refs[4]))
    >>> show(tree.ast)
    int f(int a)
    {
      b = a + 1;
      if (a)
      {
        a = 2;
        a = 2;
      }
    }
    <BLANKLINE>
    """

    def __init__(self, ast):
        self.ast = ast
        self._parents = None

    @property
    def parents(self):
        if self._parents is None:
            parents = {}
            stack = [self.ast]
            while stack:
                node = stack.pop()
                for _, child in node.children():
                    parents[id(child)] = node
                    stack.append(child)
            self._parents = parents
        return self._parents

    def invalidate(self):
        self._parents = None

    def parent(self, node):
        return self.parents.get(id(node))

    def ancestors(self, node):
        node = self.parent(node)
        while node is not None:
            yield node
            node = self.parent(node)

    def attached(self, node):
        return node is self.ast or id(node) in self.parents

    def search(self, root, kind=Node, predicate=None, prune=None):
        found = []
        stack = [root]
        while stack:
            node = stack.pop()
            if prune is not None and node is not root and prune(node):
                continue
            if isinstance(node, kind) and (predicate is None or predicate(node)):
                found.append(node)
            stack.extend(reversed([child for _, child in node.children()]))
        return found

    def references(self, root, name, prune=None):
        return self.search(
            root, ID,
            lambda n: n.name == name and not self.is_label(n),
            prune)

    def is_label(self, node):
        parent = self.parent(node)
        if isinstance(parent, StructRef):
            return parent.field is node
        return isinstance(parent, NamedInitializer) and node is not parent.expr

    def slot(self, node):
        parent = self.parent(node)
        assert parent is not None, f'{node.__class__.__name__} is not attached'
        for attr in parent.__slots__[:-2]:
            value = getattr(parent, attr)
            if value is node:
                return parent, attr, None
            if isinstance(value, list):
                for i, item in enumerate(value):
                    if item is node:
                        return parent, attr, i
        assert False, f'{node.__class__.__name__} not found in its parent'

    def statement(self, node):
        while node is not None and node is not self.ast:
            parent, attr, _ = self.slot(node)
            if attr in STATEMENT_LISTS or attr in STATEMENT_SLOTS:
                return node
            node = parent
        return None

    def is_statement(self, node):
        _, attr, index = self.slot(node)
        return attr in STATEMENT_SLOTS or (attr in STATEMENT_LISTS and index is not None)

    def replace(self, node, new):
        parent, attr, index = self.slot(node)
        if index is None:
            setattr(parent, attr, new)
        else:
            getattr(parent, attr)[index] = new
        self.invalidate()

    def insert_before(self, node, *nodes):
        self._insert(node, nodes, 0)

    def insert_after(self, node, *nodes):
        self._insert(node, nodes, 1)

    def _insert(self, node, nodes, offset):
        if not nodes:
            return
        parent, attr, index = self.slot(node)
        if index is None:
            # a lone statement under if/for/while becomes a block
            items = [node, *nodes] if offset else [*nodes, node]
            setattr(parent, attr, Compound(items))
        else:
            position = index + offset
            getattr(parent, attr)[position:position] = nodes
        self.invalidate()

    def splice(self, node, nodes):
        parent, attr, index = self.slot(node)
        assert index is not None, f'{node.__class__.__name__} is not in a list'
        getattr(parent, attr)[index:index + 1] = nodes
        self.invalidate()

    def detach(self, node):
        parent, attr, index = self.slot(node)
        if index is not None:
            del getattr(parent, attr)[index]
        elif attr in STATEMENT_SLOTS:
            setattr(parent, attr, EmptyStatement())
        else:
            setattr(parent, attr, None)
        self.invalidate()

    @staticmethod
    def copy(node):
        return copy.deepcopy(node)


class Names:
    """
    >>> names = Names(['x_a', 'x_a_0'])
    >>> names.get('x_a'), names.get('x_b'), names.get('x_b')
    ('x_a_1', 'x_b', 'x_b_0')
    >>> names.next('_anonymous_'), names.next('_anonymous_')
    ('_anonymous_0', '_anonymous_1')
    """

    def __init__(self, taken=()):
        self.taken = set(taken)
        self.counters = {}

    def get(self, base):
        name = base
        next_value = 0
        while name in self.taken:
            name = f'{base}_{next_value}'
            next_value += 1
        self.taken.add(name)
        return name

    def next(self, prefix):
        while True:
            next_value = self.counters.get(prefix, 0)
            self.counters[prefix] = next_value + 1
            name = f'{prefix}{next_value}'
            if name not in self.taken:
                self.taken.add(name)
                return name


def identifiers(ast):
    names = set()
    stack = [ast]
    while stack:
        node = stack.pop()
        if isinstance(node, (ID, Decl, Typedef, Struct)) and node.name:
            names.add(node.name)
        elif isinstance(node, TypeDecl) and node.declname:
            names.add(node.declname)
        stack.extend(child for _, child in node.children())
    return names


def get_typedecl(node):
    while not isinstance(node, TypeDecl):
        node = node.type
    return node


def type_name(node):
    """
    >>> from pycparser import CParser
    >>> ast = CParser().parse('typedef int T; const struct S * const p; T q[3]; union U u;')
    >>> [type_name(d.type) for d in ast.ext]
    ['int', 'struct S', 'T', None]
    """
    t = get_typedecl(node).type
    if isinstance(t, Struct):
        return None if t.name is None else f'struct {t.name}'
    if isinstance(t, IdentifierType):
        return ' '.join(t.names)
    return None


def int_value(node):
    """
    >>> [int_value(Constant('int', v)) for v in ('12', '0x10', '010', '3u', '0')]
    [12, 16, 8, 3, 0]
    >>> int_value(ID('n')) is None
    True
    """
    if not isinstance(node, Constant) or node.type not in ('int', 'unsigned int', 'long int', 'unsigned long int'):
        return None
    value = node.value.rstrip('uUlL')
    if value.startswith(('0x', '0X', '0b', '0B')):
        return int(value, 0)
    if len(value) > 1 and value.startswith('0'):
        return int(value, 8)
    return int(value)


def array_size(node):
    return int_value(node.dim)


def rename(type, name):
    t = copy.deepcopy(type)
    get_typedecl(t).declname = name
    return t


def make_decl(name, type, init=None, storage=()):
    return Decl(name=name, quals=[], align=[], storage=list(storage), funcspec=[],
                type=rename(type, name), init=init, bitsize=None)


def make_typename(type):
    return Typename(name=None, quals=[], align=None, type=rename(type, None))


def pointer_to(type):
    if isinstance(type, ArrayDecl):
        type = type.type
    return PtrDecl(quals=[], type=copy.deepcopy(type))


def int_literal(value):
    return Constant('int', str(value))


def sizeof(node):
    return UnaryOp('sizeof', node)


def make_call(name, *args):
    return FuncCall(ID(name), ExprList(list(args)))


def call_name(node):
    if isinstance(node, FuncCall) and isinstance(node.name, ID):
        return node.name.name
    return None


def strip_cast(node):
    while isinstance(node, Cast):
        node = node.expr
    return node


def is_null(node, null_names=('NULL',)):
    node = strip_cast(node)
    if isinstance(node, ID):
        return node.name in null_names
    return int_value(node) == 0


def is_block(node):
    return isinstance(node, (Compound, FileAST, Case, Default))
