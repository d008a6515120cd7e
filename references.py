#!/usr/bin/env python3

import copy
import logging
from pycparser.c_ast import (
    ID, UnaryOp, BinaryOp, ArrayRef, StructRef, Assignment, FuncCall, ExprList,
    Decl)
from ctree import call_name, is_null, make_call, int_literal, make_typename
from aggregates import VALUE, POINTER, ARRAY
from fields import make_operand, unwrap
from initializers import allocation
from assignments import assign

log = logging.getLogger('structdecomp.references')


class ReferenceRewriter:
    """
    >>> from decompose import decompose_source
    >>> decompose_source('''
    ... struct P {int x; int y[2];};
    ... int f(struct P *p, struct P q) { return p->x + q.y[1]; }
    ... int g(int x) {
    ...   struct P a, *b = &a, c[2];
    ...   a.x = x;
    ...   c[1].y[0] = b->x * (*b).y[1] + (&a)->x;
    ...   if (b != NULL)
    ...     free(b);
    ...   return f(b, c[x]) + f(&a, *b);
    ... }''')
    struct P
    {
      int x;
      int y[2];
    };
    int f(int *p_x, int *p_y, int q_x, int q_y[2])
    {
      return (*p_x) + q_y[1];
    }
    <BLANKLINE>
    int g(int x)
    {
      int a_x;
      int a_y[2];
      int *b_x = &a_x;
      int *b_y = a_y;
      int c_x[2];
      int c_y[2][2];
      a_x = x;
      c_y[1][0] = (*b_x) * b_y[1] + a_x;
      if (b_x != NULL)
      {
        free(b_x);
        free(b_y);
      }
      return f(b_x, b_y, c_x[x], c_y[x]) + f(&a_x, a_y, *b_x, b_y);
    }
    <BLANKLINE>
    """

    def __init__(self, registry):
        self.registry = registry
        self.tree = registry.tree

    def warn(self, binding, node, what='use'):
        log.warning('%s: unsupported %s of %s left unchanged', node.coord, what, binding.name)

    def rewrite(self, binding):
        root = binding.scope.body if binding.is_param else binding.scope
        occurrences = self.tree.references(
            root, binding.name,
            lambda n: n is binding.decl or self.registry.shadows(n, binding))
        log.debug('%s: %d occurrences of %s', binding.decl.coord, len(occurrences), binding.name)
        for node in occurrences:
            # an earlier rewrite may have replaced the whole statement
            if self.tree.attached(node):
                self.rewrite_occurrence(binding, node)

    def rewrite_occurrence(self, binding, node):
        tree = self.tree
        parent = tree.parent(node)
        grand = tree.parent(parent)

        if isinstance(parent, StructRef) and parent.name is node:
            return self.member(binding, parent, self.accessed(binding, parent.type))
        if (isinstance(parent, UnaryOp) and parent.expr is node and
                isinstance(grand, StructRef) and grand.name is parent):
            if parent.op == '*' and grand.type == '.':
                return self.member(binding, grand, self.accessed(binding, '->'))
            if parent.op == '&' and grand.type == '->':
                return self.member(binding, grand, self.accessed(binding, '.'))
            return self.warn(binding, grand, 'member access')
        if (isinstance(parent, ArrayRef) and parent.name is node and
                isinstance(grand, StructRef) and grand.name is parent and grand.type == '.'):
            return self.member(binding, grand, make_operand(binding, '[]', parent.subscript))

        expr, operand = self.occurrence_operand(binding, node)
        context = tree.parent(expr)
        if isinstance(context, Assignment):
            if context.op != '=':
                return self.warn(binding, context, 'compound assignment')
            return self.assignment(binding, context, context.lvalue, context.rvalue, expr, operand)
        if isinstance(context, ExprList) and isinstance(tree.parent(context), FuncCall):
            return self.call(binding, tree.parent(context), expr, operand)
        if operand.shape == (POINTER, None) and self.tested(expr, context):
            return tree.replace(expr, ID(binding.field_name(binding.aggregate.fields[0])))
        if isinstance(context, Decl) and context.init is expr:
            target = self.registry.classify(context, quiet=True)
            if target is not None and target.aggregate is binding.aggregate:
                log.debug('%s: %s is copied when %s is decomposed', expr.coord, binding.name, context.name)
                return None
        return self.warn(binding, expr)

    def accessed(self, binding, access):
        kind = binding.kind
        if access == '.' and kind == VALUE:
            return make_operand(binding)
        if access == '->' and kind == POINTER:
            return make_operand(binding, '*')
        if access == '->' and kind == ARRAY:
            return make_operand(binding, '[]', int_literal(0))
        return None

    def member(self, binding, ref, operand):
        """
        >>> from decompose import decompose_source
        >>> decompose_source('struct P {int w[4];}; int f(struct P *p) { return sizeof(p->w) + sizeof(p->w[0]); }')
        struct P
        {
          int w[4];
        };
        int f(int *p_w)
        {
          return sizeof(int [4]) + sizeof(p_w[0]);
        }
        <BLANKLINE>
        """
        field = binding.aggregate.field(ref.field.name)
        if field is None or operand is None or operand.denotes != 'object':
            return self.warn(binding, ref, 'member access')
        new = operand.object(field)
        holder = self.tree.parent(ref)
        if (isinstance(holder, UnaryOp) and holder.op == 'sizeof' and
                field.is_array and binding.kind == POINTER):
            # size of the array, not of the field pointer
            return self.tree.replace(ref, make_typename(field.type))
        if (isinstance(new, UnaryOp) and new.op == '*' and
                isinstance(holder, UnaryOp) and holder.op == '&'):
            # &p->f is the field pointer itself
            return self.tree.replace(holder, new.expr)
        self.tree.replace(ref, new)

    def occurrence_operand(self, binding, node):
        parent = self.tree.parent(node)
        if isinstance(parent, UnaryOp) and parent.op in ('*', '&') and parent.expr is node:
            return parent, make_operand(binding, parent.op)
        if isinstance(parent, ArrayRef) and parent.name is node:
            grand = self.tree.parent(parent)
            if isinstance(grand, UnaryOp) and grand.op == '&':
                return grand, make_operand(binding, '&[]', parent.subscript)
            return parent, make_operand(binding, '[]', parent.subscript)
        return node, make_operand(binding)

    def operand(self, expr):
        wrap, subscript, node = unwrap(expr)
        if not isinstance(node, ID):
            return None
        binding = self.registry.lookup(expr, node.name)
        if binding is None:
            return None
        return make_operand(binding, wrap, subscript)

    def tested(self, expr, context):
        if isinstance(context, BinaryOp):
            if context.op in ('==', '!='):
                other = context.right if context.left is expr else context.left
                return is_null(other, self.registry.options.null_names)
            return context.op in ('&&', '||')
        if isinstance(context, UnaryOp):
            return context.op == '!'
        _, attr, _ = self.tree.slot(expr)
        return attr == 'cond'

    def assignment(self, binding, statement, lvalue, rvalue, expr, operand):
        tree = self.tree
        if not tree.is_statement(statement):
            return self.warn(binding, statement, 'assignment used as a value')
        fields = binding.aggregate.fields
        statements = None

        if expr is lvalue and operand.shape == (POINTER, None):
            if is_null(rvalue, self.registry.options.null_names):
                statements = [Assignment('=', ID(binding.field_name(f)), copy.deepcopy(rvalue))
                              for f in fields]
            else:
                calls = allocation(self.registry, binding, rvalue)
                if calls is not None:
                    statements = [Assignment('=', ID(binding.field_name(f)), call)
                                  for f, call in zip(fields, calls)]

        if statements is None:
            other = self.operand(rvalue if expr is lvalue else lvalue)
            if other is None or other.binding.aggregate is not binding.aggregate:
                return self.warn(binding, statement, 'assignment')
            lhs, rhs = (operand, other) if expr is lvalue else (other, operand)
            statements = assign(self.registry, lhs, rhs)
            if statements is None:
                return self.warn(binding, statement, 'assignment')

        tree.insert_after(statement, *statements)
        tree.detach(statement)

    def call(self, binding, call, expr, operand):
        """
        >>> from pycparser import CParser
        >>> from pycparser.c_ast import ID
        >>> from ctree import show
        >>> from decompose import StructDecomposer
        >>> ast = CParser().parse('struct S {int a;}; void f() { struct S x, y; assign(x, y); }')
        >>> ast.ext[1].body.block_items[2].name = ID('operator=')
        >>> StructDecomposer(ast).decompose_all()
        ['struct S']
        >>> show(ast)
        struct S
        {
          int a;
        };
        void f()
        {
          int x_a;
          int y_a;
          x_a = y_a;
        }
        <BLANKLINE>
        """
        name = call_name(call)
        args = call.args.exprs
        if name == 'operator=':
            assert len(args) == 2, f'{call.coord}: operator= takes two operands'
            return self.assignment(binding, call, args[0], args[1], expr, operand)
        if name in self.registry.options.deallocators and operand.shape == (POINTER, None):
            if len(args) != 1 or not self.tree.is_statement(call):
                return self.warn(binding, call, 'deallocation')
            statements = [make_call(name, ID(binding.field_name(f))) for f in binding.aggregate.fields]
            self.tree.insert_after(call, *statements)
            return self.tree.detach(call)
        if operand.denotes is None:
            return self.warn(binding, expr, 'argument')
        self.tree.splice(expr, [operand.expression(f) for f in binding.aggregate.fields])
