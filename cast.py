#!/usr/bin/env python3

"""
>>> parse('struct S *p = &(struct S){1};')
FileAST:
  Decl: p, [], [], [], []
    PtrDecl: []
      TypeDecl: p, [], None
        Struct: S
    UnaryOp: &
      CompoundLiteral:
        Typename: None, [], None
          TypeDecl: None, [], None
            Struct: S
        InitList:
          Constant: int, 1
>>> parse('struct S *p = (struct S *) malloc(2 * sizeof(struct S));')
FileAST:
  Decl: p, [], [], [], []
    PtrDecl: []
      TypeDecl: p, [], None
        Struct: S
    Cast:
      Typename: None, [], None
        PtrDecl: []
          TypeDecl: None, [], None
            Struct: S
      FuncCall:
        ID: malloc
        ExprList:
          BinaryOp: *
            Constant: int, 2
            UnaryOp: sizeof
              Typename: None, [], None
                TypeDecl: None, [], None
                  Struct: S
>>> parse('struct S a[] = {{1}, [2] = {.v = 3}};')
FileAST:
  Decl: a, [], [], [], []
    ArrayDecl: []
      TypeDecl: a, [], None
        Struct: S
    InitList:
      InitList:
        Constant: int, 1
      NamedInitializer:
        InitList:
          NamedInitializer:
            Constant: int, 3
            ID: v
        Constant: int, 2
>>> parse('int f(struct S *p) { return (*p).v + p->v; }')
FileAST:
  FuncDef:
    Decl: f, [], [], [], []
      FuncDecl:
        ParamList:
          Decl: p, [], [], [], []
            PtrDecl: []
              TypeDecl: p, [], None
                Struct: S
        TypeDecl: f, [], None
          IdentifierType: ['int']
    Compound:
      Return:
        BinaryOp: +
          StructRef: .
            UnaryOp: *
              ID: p
            ID: v
          StructRef: ->
            ID: p
            ID: v
"""

from pycparser import CParser
from io import StringIO


def dump(ast):
    buf = StringIO()
    ast.show(buf)
    for line in buf.getvalue().splitlines():
        print(line.rstrip())


def parse(s):
    parser = CParser()
    dump(parser.parse(s))
