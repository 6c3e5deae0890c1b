#! /usr/bin/env python3
'''
ConsoleID: Identify the console of a ROM, read its header, and check its region against the filename
'''

# standard imports
from concurrent.futures import ThreadPoolExecutor
from glob import escape, glob
from gzip import BadGzipFile
from os.path import basename, isdir, isfile
from zipfile import BadZipFile, ZipFile
import argparse
import json
import sys
import zlib

# non-standard imports
from CHD import CHD, ChdError
from RegionID import infer_region_from_filename
from RomID import VERSION, LOG_NORMAL, LOG_QUIET, LOG_VERBOSE
from RomID import ArchiveError, CodecError, NoSupportedRomError, NoValidHeaderFoundError, RomIDError, UnsupportedFormatError
from RomID import analyze_console, check_not_exists, error, get_extension, open_file, print_log, set_log_level

# ConsoleID constants
MAX_ROM_SIZE = 128 * 1024 # max bytes to extract from a ZIP member
MAX_HEADER_SIZE = 0x20000 # max bytes to decompress from a CHD / read from an ambiguous container
CONSOLE_EXTS = { # cartridge formats whose extension maps to exactly one console
    'GameGear':     {'gg'},                                       # Sega Game Gear
    'GB':           {'gb', 'gbc'},                                # Nintendo GameBoy / GameBoy Color
    'GBA':          {'gba'},                                      # Nintendo GameBoy Advance
    'Genesis':      {'32x', 'gen', 'md'},                         # Sega Genesis / Mega Drive / 32X
    'MasterSystem': {'sms'},                                      # Sega Master System
    'N64':          {'n64', 'v64', 'z64'},                        # Nintendo 64
    'NES':          {'nes'},                                      # Nintendo Entertainment System
    'SegaCD':       {'scd'},                                      # Sega CD / Mega CD
    'SNES':         {'sfc', 'smc'},                               # Super Nintendo Entertainment System
}
EXT2CONSOLE = {ext:console for console in CONSOLE_EXTS for ext in CONSOLE_EXTS[console] if len([c for c,es in CONSOLE_EXTS.items() if ext in es]) == 1}
CD_SYSTEM = 'CDSystem' # ambiguous container: console is decided by sniffing the data
CONTAINER_EXTS = {'bin', 'img', 'iso', 'psx'}
ARCHIVE_EXTS = {'chd', 'zip'}
SUPPORTED_ROM_EXTENSIONS = tuple('.%s' % ext for ext in ['nes', 'smc', 'sfc', 'n64', 'v64', 'z64', 'sms', 'gg', 'md', 'gen', '32x', 'gb', 'gbc', 'gba', 'scd', 'iso', 'bin', 'img', 'psx'])
GENESIS_SNIFF_WORDS = [b'SEGA MEGA DRIVE', b'SEGA GENESIS']
SEGACD_SNIFF_WORD = b'sega cd'
SEGACD_SNIFF_SIZE = 0x10C # signature at 0x100 and region byte at 0x10B
REGION_MISMATCH_BANNER = "*** WARNING: POSSIBLE REGION MISMATCH! ***"
SEPARATOR = '=' * 60
RULE = '-' * 60

# get the last extension of a filename as-is (no .gz stripping)
def get_archive_extension(fn):
    fn = basename(fn.strip()).lower()
    return fn.split('.')[-1].strip() if '.' in fn else ''

# get the console of a ROM filename from its extension (CD_SYSTEM if ambiguous, None if unsupported)
def get_rom_file_type(fn):
    ext = get_extension(fn)
    if ext in EXT2CONSOLE:
        return EXT2CONSOLE[ext]
    elif ext in CONTAINER_EXTS:
        return CD_SYSTEM
    elif ext == 'chd' and get_archive_extension(fn) == 'chd': # gzipped archives are not opened
        return CD_SYSTEM
    return None

# check if a path is something analyze_path() would try
def is_supported_file(fn):
    return get_rom_file_type(fn) is not None or get_archive_extension(fn) in ARCHIVE_EXTS

# decide the console of ambiguous container data (Genesis and SegaCD signatures first, PSX otherwise)
def sniff_console(data):
    if len(data) >= 0x110 and any(data[0x100 : 0x110].startswith(word) for word in GENESIS_SNIFF_WORDS):
        return 'Genesis'
    elif len(data) >= SEGACD_SNIFF_SIZE and bytes(data[0x100 : 0x107]).lower() == SEGACD_SNIFF_WORD:
        return 'SegaCD'
    return 'PSX'

# analyze ROM data using the extension of its (real or archive member) filename
def process_rom_data(data, fn):
    console = get_rom_file_type(fn)
    if console is None:
        raise UnsupportedFormatError(fn)
    if console == CD_SYSTEM:
        console = sniff_console(data)
        print_log("[+] Sniffed console of %s: %s" % (basename(fn), console), level=LOG_VERBOSE)
    return analyze_console(console, data, basename(fn))

# iterate over (member name, first max_size bytes) of supported ROMs in a ZIP, in archive order
def iter_zip_roms(fn, max_size=MAX_ROM_SIZE):
    try:
        with ZipFile(fn) as z:
            for info in z.infolist():
                if info.is_dir() or not info.filename.lower().endswith(SUPPORTED_ROM_EXTENSIONS):
                    continue
                with z.open(info) as f:
                    data = f.read(max_size)
                yield info.filename, data
    except (BadZipFile, EOFError, NotImplementedError, RuntimeError, zlib.error) as e:
        raise ArchiveError(fn, str(e))

# extract the first supported ROM of a ZIP: returns (data, member name)
def extract_zip_rom(fn, max_size=MAX_ROM_SIZE):
    for name, data in iter_zip_roms(fn, max_size=max_size):
        print_log("[+] Found supported ROM in zip: %s" % name, level=LOG_VERBOSE)
        return data, name
    raise NoSupportedRomError(fn)

# analyze the first supported ROM of a ZIP whose header can be read
def analyze_zip(fn, max_size=MAX_ROM_SIZE):
    errors = list()
    for name, data in iter_zip_roms(fn, max_size=max_size):
        print_log("[+] Found supported ROM in zip: %s" % name, level=LOG_VERBOSE)
        try:
            return process_rom_data(data, name)
        except RomIDError as e:
            print_log("[-] Unable to analyze %s in %s: %s" % (name, fn, e), level=LOG_VERBOSE)
            errors.append((name, e))
    if len(errors) == 0:
        raise NoSupportedRomError(fn)
    raise NoValidHeaderFoundError(fn, errors)

# decompress the first max_size bytes of a CHD
def extract_chd_header(fn, max_size=MAX_HEADER_SIZE):
    print_log("[+] Analyzing CHD file: %s" % basename(fn), level=LOG_VERBOSE)
    data = bytearray()
    try:
        with CHD(fn) as chd:
            total_size = min(chd.logical_bytes, max_size)
            for hunk_num in range(chd.hunk_count):
                if len(data) >= total_size:
                    break
                data += chd.read_hunk(hunk_num)[0 : total_size - len(data)]
    except ChdError as e:
        raise CodecError(fn, str(e))
    print_log("[+] Decompressed first %d bytes for header analysis." % len(data), level=LOG_VERBOSE)
    return bytes(data)

# analyze a ROM file (or ZIP / CHD archive)
def analyze_path(fn):
    archive_ext = get_archive_extension(fn)
    if archive_ext == 'zip':
        return analyze_zip(fn)
    elif archive_ext == 'chd':
        return process_rom_data(extract_chd_header(fn), fn)
    console = get_rom_file_type(fn)
    if console is None:
        raise UnsupportedFormatError(fn)
    try:
        with open_file(fn, 'rb') as f:
            if console == CD_SYSTEM:
                data = f.read(MAX_HEADER_SIZE)
            else: # whole cartridge (SNES copier header check needs the true size)
                data = f.read()
    except (BadGzipFile, EOFError, zlib.error) as e: # corrupt .gz
        raise ArchiveError(fn, str(e))
    return process_rom_data(data, fn)

# analyze a ROM file, returning (path, result, error) instead of raising
def analyze_path_safe(fn):
    try:
        return fn, analyze_path(fn), None
    except (RomIDError, OSError) as e:
        return fn, None, e

# analyze multiple ROM files (results are in the same order as the input)
def analyze_paths(fns, threads=1):
    if threads < 1:
        raise ValueError("Number of threads must be at least 1: %d" % threads)
    if threads == 1:
        return [analyze_path_safe(fn) for fn in fns]
    with ThreadPoolExecutor(max_workers=threads) as executor:
        return list(executor.map(analyze_path_safe, fns))

# recursively iterate over the files/folders in a given folder
def recursive_glob(fn):
    to_visit = [fn]
    while len(to_visit) != 0:
        curr = to_visit.pop().rstrip('/'); yield curr
        if isdir(curr):
            to_visit += list(glob('%s/*' % escape(curr)))

# replace folders with the supported files inside them
def expand_inputs(fns):
    out = list()
    for fn in fns:
        if isdir(fn):
            out += sorted(curr for curr in recursive_glob(fn) if isfile(curr) and is_supported_file(curr))
        else:
            out.append(fn)
    return out

# describe a region mismatch
def region_mismatch_warning(result):
    return '\n'.join([
        REGION_MISMATCH_BANNER,
        "Filename suggests: %s" % infer_region_from_filename(result.source_name()),
        "ROM header says:   %s (%s)" % (result.region(), result.region_string()),
    ])

# get user args interactively
def get_args_interactive(argv):
    print_log("=== RomID v%s ===" % VERSION)
    arg_input = None
    while arg_input is None:
        print_log("Enter ROM filename (no quotes): ", end='')
        arg_input = input().replace('"','').replace("'",'').strip()
        if not isfile(arg_input) and not isdir(arg_input):
            print_log("ERROR: File/folder not found: %s\n" % arg_input); arg_input = None
    argv.append(arg_input)

# parse user arguments
def parse_args(argv):
    # if --version, just print version and exit
    if '--version' in argv:
        print("RomID v%s" % VERSION); sys.exit()

    # run argparse
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('input', nargs='+', type=str, help="Input ROM File(s) / Folder(s)")
    parser.add_argument('-o', '--output', required=False, type=str, default='stdout', help="Output File")
    parser.add_argument('-j', '--json', action="store_true", help="Output JSON")
    parser.add_argument('-t', '--threads', required=False, type=int, default=1, help="Number of Threads")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('-v', '--verbose', action="store_true", help="Print Debug Messages")
    verbosity.add_argument('-q', '--quiet', action="store_true", help="Only Print Errors")
    parser.add_argument('--version', action="store_true", help="Print RomID Version (%s)" % VERSION)
    args = parser.parse_args(argv)

    # check threads
    if args.threads < 1:
        error("Number of threads must be at least 1: %d" % args.threads)

    # check output file
    if args.output != 'stdout':
        check_not_exists(args.output)

    # all good, so return args
    return args

# main program logic: returns the exit code
def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    if len(argv) == 0:
        get_args_interactive(argv)
    args = parse_args(argv)
    if args.verbose:
        set_log_level(LOG_VERBOSE)
    elif args.quiet:
        set_log_level(LOG_QUIET)
    else:
        set_log_level(LOG_NORMAL)
    fns = expand_inputs(args.input)
    if len(fns) == 0:
        error("No ROM files found: %s" % ', '.join(args.input))

    # analyze and report
    if not args.json:
        print_log(SEPARATOR); print_log("RomID v%s" % VERSION); print_log(SEPARATOR)
    results = list(); num_fail = 0
    for fn, result, e in analyze_paths(fns, threads=args.threads):
        if e is not None:
            num_fail += 1
            if isinstance(e, FileNotFoundError):
                print_log("File not found: %s" % fn, level=LOG_QUIET)
            else:
                print_log("Error processing file %s: %s" % (fn, e), level=LOG_QUIET)
            continue
        results.append(result)
        if result.region_mismatch(): # JSON output already carries region_mismatch
            print_log(region_mismatch_warning(result), level=LOG_VERBOSE if args.json else LOG_NORMAL)

    # write output
    f_out = open_file(args.output, 'wt')
    if args.json:
        print(json.dumps([result.json() for result in results], indent=2), file=f_out)
    else:
        for result in results:
            print(result.print(), file=f_out)
            print_log(RULE)
    if f_out is not sys.stdout:
        f_out.close()
    return 0 if num_fail == 0 else 1

# run program
if __name__ == "__main__":
    sys.exit(main())
