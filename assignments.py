#!/usr/bin/env python3

"""
>>> from decompose import decompose_source
>>> decompose_source('''
... struct T {int v; int w[2];};
... void f(int i) {
...   struct T a, b, arr[4], *p, *q;
...   b = a;
...   arr[i] = a;
...   arr[0] = arr[i + 1];
...   p = &b;
...   q = p;
...   *q = arr[2];
...   a = *p;
... }''', 'T')
struct T
{
  int v;
  int w[2];
};
void f(int i)
{
  int a_v;
  int a_w[2];
  int b_v;
  int b_w[2];
  int arr_v[4];
  int arr_w[4][2];
  int *p_v;
  int *p_w;
  int *q_v;
  int *q_w;
  b_v = a_v;
  memcpy(b_w, a_w, sizeof(int [2]));
  arr_v[i] = a_v;
  memcpy(arr_w[i], a_w, sizeof(int [2]));
  arr_v[0] = arr_v[i + 1];
  memcpy(arr_w[0], arr_w[i + 1], sizeof(int [2]));
  p_v = &b_v;
  p_w = b_w;
  q_v = p_v;
  q_w = p_w;
  *q_v = arr_v[2];
  memcpy(q_w, arr_w[2], sizeof(int [2]));
  a_v = *p_v;
  memcpy(a_w, p_w, sizeof(int [2]));
}
<BLANKLINE>
>>> decompose_source('struct T {int v; int w[2];}; void g(int i) { struct T arr[2], *p; p = &arr[i]; }')
struct T
{
  int v;
  int w[2];
};
void g(int i)
{
  int arr_v[2];
  int arr_w[2][2];
  int *p_v;
  int *p_w;
  p_v = &arr_v[i];
  p_w = arr_w[i];
}
<BLANKLINE>
"""

import logging
from pycparser.c_ast import Assignment
from aggregates import VALUE, POINTER, ARRAY
from fields import copy_statement

log = logging.getLogger('structdecomp.assignments')

ELEMENTS = {(ARRAY, '[]'), (POINTER, '[]')}


class ObjectCopy:
    """Copies every field of the aggregate object on the right into the one
    on the left."""
    lhs = rhs = frozenset()

    @classmethod
    def match(cls, lhs, rhs):
        return lhs.shape in cls.lhs and rhs.shape in cls.rhs

    @classmethod
    def apply(cls, registry, lhs, rhs):
        return [copy_statement(registry, field, lhs.object(field), rhs.object(field))
                for field in lhs.binding.aggregate.fields]


class AddressCopy(ObjectCopy):
    """Points every field pointer on the left where the right points."""

    @classmethod
    def apply(cls, registry, lhs, rhs):
        return [Assignment('=', lhs.address(field), rhs.address(field))
                for field in lhs.binding.aggregate.fields]


class ScalarToScalar(ObjectCopy):
    lhs = {(VALUE, None)}
    rhs = {(VALUE, None)}


class ElementToElement(ObjectCopy):
    lhs = rhs = ELEMENTS


class DerefToScalar(ObjectCopy):
    lhs = {(VALUE, None)}
    rhs = {(POINTER, '*')}


class PointerToPointer(AddressCopy):
    lhs = {(POINTER, None)}
    rhs = {(POINTER, None), (ARRAY, None), (POINTER, '&[]'), (ARRAY, '&[]')}


class AddressOfToPointer(AddressCopy):
    lhs = {(POINTER, None)}
    rhs = {(VALUE, '&')}


class StructToArrayPosition(ObjectCopy):
    lhs = ELEMENTS
    rhs = {(VALUE, None), (POINTER, '*')}


class ArrayPositionToStruct(ObjectCopy):
    lhs = {(VALUE, None), (POINTER, '*')}
    rhs = ELEMENTS


class StructToDeref(ObjectCopy):
    lhs = {(POINTER, '*')}
    rhs = {(VALUE, None), (POINTER, '*')}


CATALOG = (
    ScalarToScalar, ElementToElement, DerefToScalar, PointerToPointer,
    AddressOfToPointer, StructToArrayPosition, ArrayPositionToStruct,
    StructToDeref,
)


def assign(registry, lhs, rhs):
    """Statements replacing the aggregate assignment `lhs = rhs`, or None
    when no case of the catalog matches."""
    assert lhs.binding.aggregate is rhs.binding.aggregate, 'assignment between different aggregates'
    for case in CATALOG:
        if case.match(lhs, rhs):
            log.debug('%s = %s matched %s', lhs.binding.name, rhs.binding.name, case.__name__)
            return case.apply(registry, lhs, rhs)
    return None
