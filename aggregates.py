#!/usr/bin/env python3

import logging
from typing import Any, NamedTuple
from pycparser.c_ast import (
    Decl, DeclList, TypeDecl, PtrDecl, ArrayDecl, FuncDecl, FuncDef, Typedef,
    Struct, Union, Enum, Compound, FileAST, For, ParamList, InitList,
    NamedInitializer)
from ctree import BaseVisitor, Names, identifiers, get_typedecl, type_name, int_value, array_size, is_block

log = logging.getLogger('structdecomp.registry')

VALUE = 'value'
POINTER = 'pointer'
ARRAY = 'array'


class Options(NamedTuple):
    allocators: tuple = ('malloc', 'calloc')
    deallocators: tuple = ('free',)
    copy_function: str = 'memcpy'
    copy_header: str = 'string.h'
    null_names: tuple = ('NULL', 'nullptr')


class Field(NamedTuple):
    name: str
    type: Any

    @property
    def is_array(self):
        return isinstance(self.type, ArrayDecl)


class AggregateType(NamedTuple):
    name: str
    names: tuple
    struct: Struct
    fields: tuple

    def index(self, name):
        for i, field in enumerate(self.fields):
            if field.name == name:
                return i
        return None

    def field(self, name):
        i = self.index(name)
        return None if i is None else self.fields[i]


class Binding(NamedTuple):
    decl: Decl
    aggregate: AggregateType
    kind: str
    scope: Any
    size: Any = None

    @property
    def name(self):
        return self.decl.name

    @property
    def is_param(self):
        return isinstance(self.scope, FuncDef)

    @property
    def is_global(self):
        return isinstance(self.scope, FileAST)

    def field_name(self, field):
        return f'{self.decl.name}_{field.name}'


class DefinitionSplitter(BaseVisitor):

    def __init__(self, names):
        self.names = names

    def definition(self, node):
        if not isinstance(node, Decl) or node.name is None or modifiers(node.type) is None:
            return None
        t = get_typedecl(node.type).type
        if isinstance(t, (Struct, Union)) and t.decls is not None:
            return t
        if isinstance(t, Enum) and t.values is not None:
            return t
        return None

    def anonymous(self, t):
        if t.name is None:
            t.name = self.names.next('_anonymous_')

    def rewrite(self, items):
        last_definition = None

        for node in items:
            t = self.definition(node)
            if t is None:
                last_definition = None
                continue
            if isinstance(t, Struct):
                self.anonymous(t)
            if last_definition is not t:
                last_definition = t
            else:
                self.anonymous(t)
                if isinstance(t, Enum):
                    reference = Enum(name=t.name, values=None)
                else:
                    reference = t.__class__(name=t.name, decls=None)
                get_typedecl(node.type).type = reference

    def visit_default(self, node):
        pass

    def visit_FileAST(self, node):
        self.rewrite(node.ext)
        for item in node.ext:
            self.visit(item)

    def visit_FuncDef(self, node):
        self.visit(node.body)

    def visit_Compound(self, node):
        if node.block_items is not None:
            self.rewrite(node.block_items)
        for item in node.block_items or ():
            self.visit(item)

    def visit_Case(self, node):
        self.rewrite(node.stmts)
        for item in node.stmts:
            self.visit(item)

    visit_Default = visit_Case

    def visit_Switch(self, node):
        self.visit(node.stmt)

    def visit_If(self, node):
        self.visit(node.iftrue)
        if node.iffalse:
            self.visit(node.iffalse)

    def visit_DoWhile(self, node):
        self.visit(node.stmt)

    visit_While = visit_DoWhile
    visit_Label = visit_DoWhile

    def visit_For(self, node):
        if node.init is not None:
            self.visit(node.init)
        self.visit(node.stmt)

    def visit_DeclList(self, node):
        self.rewrite(node.decls)


def modifiers(type):
    """Declarators between a declaration and its base type, outermost first,
    or None when a function declarator is among them."""
    found = []
    while not isinstance(type, TypeDecl):
        if isinstance(type, FuncDecl):
            return None
        found.append(type.__class__)
        type = type.type
    return found


def list_length(init):
    length = cursor = 0
    for expr in init.exprs:
        if isinstance(expr, NamedInitializer):
            cursor = int_value(expr.name[0])
            if cursor is None:
                return None
        cursor += 1
        length = max(length, cursor)
    return length


class Registry:

    def __init__(self, tree, options=Options(), names=None):
        self.tree = tree
        self.options = options
        self.names = Names(identifiers(tree.ast)) if names is None else names
        DefinitionSplitter(self.names).visit(tree.ast)
        tree.invalidate()
        self.headers = set()
        self.decomposed = {}
        self.aggregates = self.collect()

    def collect(self):
        ast = self.tree.ast
        typedefs = self.tree.search(ast, Typedef, lambda n: isinstance(n.type, TypeDecl))
        found = []
        for struct in self.tree.search(ast, Struct, lambda n: n.decls is not None):
            names = [] if struct.name is None else [f'struct {struct.name}']
            for typedef in typedefs:
                if typedef.type.type is struct or type_name(typedef.type) in names:
                    names.append(typedef.name)
            if not names:
                log.debug('anonymous struct without alias at %s', struct.coord)
                continue
            found.append((struct, names))

        known = {name for _, names in found for name in names}
        aggregates = []
        claimed = set()
        for struct, names in found:
            if claimed.intersection(names):
                log.warning('%s: redefinition of %s skipped', struct.coord, names[0])
                continue
            claimed.update(names)
            fields = self.fields(struct, names[0], known)
            if fields is None:
                continue
            aggregates.append(AggregateType(names[0], tuple(names), struct, fields))
            log.info('found %s with fields %s', names[0], ', '.join(f.name for f in fields))
        return aggregates

    def fields(self, struct, name, known):
        fields = []
        for member in struct.decls:
            if member.name is None:
                log.warning('%s: %s has an unnamed member, skipped', struct.coord, name)
                return None
            base = get_typedecl(member.type).type
            if isinstance(base, Struct) or type_name(member.type) in known:
                log.warning('%s: %s has aggregate field %s, nested aggregates are not decomposed',
                            struct.coord, name, member.name)
                return None
            if isinstance(member.type, ArrayDecl) and member.type.dim is None:
                log.warning('%s: %s has flexible array member %s, skipped',
                            struct.coord, name, member.name)
                return None
            fields.append(Field(member.name, member.type))
        if not fields:
            log.warning('%s: %s has no fields, skipped', struct.coord, name)
            return None
        return tuple(fields)

    def find(self, name):
        for aggregate in self.aggregates:
            if name in aggregate.names or f'struct {name}' in aggregate.names:
                return aggregate
        return None

    def aggregate_of(self, type):
        t = get_typedecl(type).type
        name = type_name(type)
        for aggregate in self.aggregates:
            if t is aggregate.struct or name in aggregate.names:
                return aggregate
        return None

    def bindings(self, aggregate):
        variables = []
        params = []
        for decl in self.tree.search(self.tree.ast, Decl):
            if decl.name is None or modifiers(decl.type) is None:
                continue
            if self.aggregate_of(decl.type) is not aggregate:
                continue
            binding = self.classify(decl)
            if binding is None:
                continue
            if binding.is_param:
                params.append(binding)
            else:
                variables.append(binding)
        return variables, params

    def scope_of(self, decl):
        parent = self.tree.parent(decl)
        if isinstance(parent, ParamList):
            funcdecl = self.tree.parent(parent)
            owner = self.tree.parent(funcdecl)
            funcdef = self.tree.parent(owner)
            if isinstance(funcdef, FuncDef) and funcdef.decl is owner:
                return funcdef
            return None
        return parent

    def classify(self, decl, quiet=False):
        warn = log.debug if quiet else log.warning
        if decl.name is None:
            return None
        found = modifiers(decl.type)
        if found is None:
            return None
        aggregate = self.aggregate_of(decl.type)
        if aggregate is None:
            return None
        scope = self.scope_of(decl)
        if isinstance(scope, DeclList):
            warn('%s: %s is declared in a for header, skipped', decl.coord, decl.name)
            return None
        if not (isinstance(scope, FuncDef) or is_block(scope)):
            return None

        if found == []:
            return Binding(decl, aggregate, VALUE, scope)
        if found == [PtrDecl] or (found == [ArrayDecl] and isinstance(scope, FuncDef)):
            return Binding(decl, aggregate, POINTER, scope)
        if found == [ArrayDecl]:
            if decl.type.dim is not None:
                size = array_size(decl.type)
                if size is None:
                    warn('%s: %s is a variable-length array, skipped', decl.coord, decl.name)
                    return None
            elif isinstance(decl.init, InitList):
                size = list_length(decl.init)
            else:
                size = None
            if size is None:
                warn('%s: %s has no static size, skipped', decl.coord, decl.name)
                return None
            return Binding(decl, aggregate, ARRAY, scope, size)
        if found == [PtrDecl, PtrDecl]:
            warn('%s: %s has multi-level indirection, skipped', decl.coord, decl.name)
        elif found[:2] == [ArrayDecl, ArrayDecl]:
            warn('%s: %s is a multi-dimensional array, skipped', decl.coord, decl.name)
        else:
            warn('%s: %s has an unsupported declarator, skipped', decl.coord, decl.name)
        return None

    def items(self, scope):
        if isinstance(scope, Compound):
            return scope.block_items or ()
        if isinstance(scope, FileAST):
            return scope.ext
        if isinstance(scope, For):
            return scope.init.decls if isinstance(scope.init, DeclList) else ()
        if isinstance(scope, FuncDef):
            args = getattr(scope.decl.type, 'args', None)
            return () if args is None else args.params
        return getattr(scope, 'stmts', None) or ()

    def declared(self, scope, name, until=None):
        """The declaration of `name` in `scope`, ignoring the ones after the
        item `until`."""
        for item in self.items(scope):
            if isinstance(item, Decl) and item.name == name:
                return item
            if item is until:
                break
        return None

    def record(self, binding):
        self.decomposed[(id(binding.scope), binding.name)] = binding

    def lookup(self, node, name):
        """The binding a symbol named `name` used at `node` refers to, when it
        is an aggregate binding that is or will be decomposed."""
        child = node
        for scope in self.tree.ancestors(node):
            binding = self.decomposed.get((id(scope), name))
            if binding is not None:
                return binding
            decl = self.declared(scope, name, child)
            if decl is not None:
                return self.classify(decl, quiet=True)
            child = scope
        return None

    def shadows(self, node, binding):
        """Whether the name of `binding` means something else in `node`."""
        if node is binding.scope:
            return False
        if isinstance(node, (Compound, For, FuncDef)) and (id(node), binding.name) in self.decomposed:
            return True
        if isinstance(node, (For, FuncDef)) and self.declared(node, binding.name) is not None:
            return True
        block = self.tree.parent(node)
        if block is binding.scope or not is_block(block):
            return False
        # a declaration hides the name from itself to the end of the block
        hidden = False
        for item in self.items(block):
            if isinstance(item, Decl) and item.name == binding.name:
                hidden = True
            if item is node:
                return hidden
        return False


def describe(s):
    """
    >>> describe('''
    ... typedef struct S {int a; double b[2];} T;
    ... typedef T U;
    ... struct {int v;} g[2] = {{1}, {2}};
    ... struct N {struct S s;};
    ... void f(T *p, int n) { U x; struct S *q[2]; }
    ... void h(struct S s);
    ... ''')
    struct S = T = U {a, b}
      x: value in Compound
      p: pointer in FuncDef
    struct _anonymous_0 {v}
      g: array[2] in FileAST
    >>> describe('struct P {int x, y;} a, b; void f(void) { struct P c[] = {{1, 2}, [3] = {0}}; }')
    struct P {x, y}
      a: value in FileAST
      b: value in FileAST
      c: array[4] in Compound
    """
    from pycparser import CParser
    from ctree import Tree
    registry = Registry(Tree(CParser().parse(s)))
    for aggregate in registry.aggregates:
        print(' = '.join(aggregate.names), '{' + ', '.join(f.name for f in aggregate.fields) + '}')
        variables, params = registry.bindings(aggregate)
        for binding in variables + params:
            size = '' if binding.size is None else f'[{binding.size}]'
            print(f'  {binding.name}: {binding.kind}{size} in {binding.scope.__class__.__name__}')
