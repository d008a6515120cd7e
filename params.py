#!/usr/bin/env python3

import copy
import logging
from pycparser.c_ast import Decl, FuncDecl
from fields import synthesize

log = logging.getLogger('structdecomp.params')


def update_prototypes(tree, funcdef):
    """Redeclares every prototype of the function with its current signature."""
    name = funcdef.decl.name
    prototypes = tree.search(
        tree.ast, Decl,
        lambda n: n.name == name and n is not funcdef.decl and isinstance(n.type, FuncDecl))
    for prototype in prototypes:
        prototype.type = copy.deepcopy(funcdef.decl.type)
        log.info('%s: prototype of %s updated', prototype.coord, name)
    tree.invalidate()


def decompose_param(registry, rewriter, binding):
    """
    >>> from decompose import decompose_source
    >>> decompose_source('''
    ... typedef struct cplx {float re, im;} C;
    ... static void scale(C *c, float k);
    ... void twice(C z, C *out) { *out = z; scale(out, 2); }
    ... static void scale(C *c, float k) { c->re *= k; c->im *= k; }
    ... ''')
    typedef struct cplx
    {
      float re;
      float im;
    } C;
    static void scale(float *c_re, float *c_im, float k);
    void twice(float z_re, float z_im, float *out_re, float *out_im)
    {
      *out_re = z_re;
      *out_im = z_im;
      scale(out_re, out_im, 2);
    }
    <BLANKLINE>
    static void scale(float *c_re, float *c_im, float k)
    {
      *c_re *= k;
      *c_im *= k;
    }
    <BLANKLINE>
    """
    tree = registry.tree
    funcdef = binding.scope
    decls = synthesize(binding)
    tree.splice(binding.decl, decls)
    registry.record(binding)
    log.info('%s: parameter %s of %s decomposed', binding.decl.coord, binding.name, funcdef.decl.name)
    rewriter.rewrite(binding)
    update_prototypes(tree, funcdef)
