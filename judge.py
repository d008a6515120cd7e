#!/usr/bin/env python3

import os
import sys
from subprocess import run

ROOT = os.path.dirname(os.path.abspath(__file__))


def cases(path):
    """
    >>> cases('decompose.py')
    ['arrays', 'heap', 'selected']
    >>> for case in cases('decompose.py'):
    ...     judge('decompose.py', case)
    """
    path = os.path.splitext(path)[0]
    return sorted(os.listdir(os.path.join(ROOT, "tests", path)))


def judge(path, testcase, bin=sys.executable):
    script = os.path.join(ROOT, path)
    path = os.path.splitext(path)[0]

    filename = os.path.join(ROOT, "tests", path, testcase)
    with open(os.path.join(filename, "out.c"), "rb") as b:
        output = b.read()
    args = []
    if os.path.exists(os.path.join(filename, "args")):
        with open(os.path.join(filename, "args"), "r") as f:
            args = f.read().split()

    command = [bin, script, "-q"] + args + [os.path.join(filename, "in.c")]
    stdout = run(command, capture_output=True, check=True).stdout
    if output != stdout:
        quit(1)


def main():
    import argparse
    parser = argparse.ArgumentParser(prog=__file__)
    parser.add_argument('--bin', default=sys.executable)
    parser.add_argument('path')
    parser.add_argument('testcase', nargs='?')
    args = parser.parse_args()
    for testcase in [args.testcase] if args.testcase else cases(args.path):
        judge(args.path, testcase, args.bin)


if __name__ == '__main__':
    main()
