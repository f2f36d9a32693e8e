#!/usr/bin/env python3
"""
Test runner for the attendance notification server.

Usage:
    python run_tests.py                      # Run all tests
    python run_tests.py -k retry             # Run tests matching a pattern
    python run_tests.py --module scheduler   # Run tests/test_*scheduler*.py only
"""

import subprocess
import sys
from pathlib import Path


def run_tests(targets, args):
    cmd = [sys.executable, "-m", "pytest", *targets, "-v", "--tb=short", *args]

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    return result.returncode


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Run the notification server tests")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--module", help="Only run test modules whose name contains this")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    tests_dir = Path(__file__).parent / "tests"
    targets = ["tests"]
    if args.module:
        targets = [
            str(path.relative_to(tests_dir.parent))
            for path in sorted(tests_dir.glob(f"test_*{args.module}*.py"))
        ]
        if not targets:
            print(f"No test modules match '{args.module}'")
            return 1

    pytest_args = []
    if args.keyword:
        pytest_args.extend(["-k", args.keyword])
    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(targets, pytest_args)


if __name__ == "__main__":
    sys.exit(main())
