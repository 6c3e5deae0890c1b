#! /usr/bin/env python3
'''
Test ConsoleID.py on a folder of sample ROMs laid out as <folder>/<Console>/<file>
'''

# imports
from glob import glob
from os.path import abspath, expanduser, isdir, isfile
from subprocess import CalledProcessError, check_output
import argparse
import json
import sys

# constants
SELF_PATH = abspath(expanduser(__file__))
DEFAULT_CONSOLEID_PATH = SELF_PATH.replace('/scripts/test.py', '/ConsoleID.py')
DEFAULT_TEST_FILES_PATH = SELF_PATH.replace('/scripts/test.py', '/example')

# parse user args
def parse_args():
    # run argparse
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('-c', '--consoleid_path', required=False, type=str, default=DEFAULT_CONSOLEID_PATH, help="Path to ConsoleID.py script")
    parser.add_argument('-t', '--test_files_path', required=False, type=str, default=DEFAULT_TEST_FILES_PATH, help="Path to folder containing test files")
    parser.add_argument('-m', '--fail_on_mismatch', action="store_true", help="Count region mismatches as failures")
    parser.add_argument('-q', '--quiet', action="store_true", help="Suppress messages")
    args = parser.parse_args()

    # check args and return
    if not isfile(args.consoleid_path):
        print("File not found: %s" % args.consoleid_path); sys.exit(1)
    args.test_files_path = args.test_files_path.rstrip('/')
    if not isdir(args.test_files_path):
        print("Directory not found: %s" % args.test_files_path); sys.exit(1)
    return args

# run ConsoleID on a single file and return its JSON result (None if it failed)
def run_consoleid(consoleid_path, fn):
    try:
        out = json.loads(check_output([sys.executable, consoleid_path, '--quiet', '--json', fn]).decode())
    except CalledProcessError:
        return None
    if len(out) != 1:
        return None
    return out[0]

# run tests
def run_tests(consoleid_path, test_files_path, fail_on_mismatch=False, quiet=False):
    # import RomID console list
    sys.path.append('/'.join(consoleid_path.split('/')[:-1]))
    from RomID import CONSOLES
    sys.path.pop()

    # run tests
    num_pass = 0; num_fail = 0
    for console in CONSOLES:
        for fn in sorted(glob('%s/%s/*' % (test_files_path, console))):
            result = run_consoleid(consoleid_path, fn)
            if result is None:
                reason = "ConsoleID failed"
            elif result['console'] != console:
                reason = "ConsoleID reported %s" % result['console']
            elif fail_on_mismatch and result['region_mismatch']:
                reason = "Region mismatch (%s)" % result['region_string']
            else:
                reason = None

            # update global test results
            if reason is None:
                num_pass += 1
            else:
                num_fail += 1
                if not quiet:
                    print("%s: %s" % (reason, fn))
    return num_pass, num_fail

# main program
if __name__ == "__main__":
    args = parse_args()
    num_pass, num_fail = run_tests(args.consoleid_path, args.test_files_path, fail_on_mismatch=args.fail_on_mismatch, quiet=args.quiet)
    if not args.quiet:
        print("Pass: %d" % num_pass)
        print("Fail: %d" % num_fail)
    sys.exit(num_fail)
