#! /usr/bin/env python3
'''
RomID: Read console-specific metadata and region from ROM headers
'''

# standard imports
from gzip import open as gopen
from os.path import basename, isdir, isfile
from struct import unpack
import sys

# non-standard imports
from RegionID import Region, check_region_mismatch, infer_region_from_filename, infer_region_from_header

# RomID constants
VERSION = '1.0.0'
DEFAULT_BUFSIZE = 1000000
FILE_MODES_GZ = {'rb', 'wb', 'rt', 'wt'}
STRIP_EXT = ['gz'] # list instead of set to iterate in order (just in case)
LOG_QUIET = 0
LOG_NORMAL = 1
LOG_VERBOSE = 2
LOG_LEVEL = LOG_NORMAL
PRINT_LABEL_WIDTH = 16

# GB/GBC constants
GB_HEADER_SIZE = 0x150
GB_CGB_FLAGS = {0x80, 0xC0}
GB_CARTRIDGE_TYPES = {0: 'ROM', 1: 'MBC1', 2: 'MBC1 + RAM', 3: 'MBC1 + RAM + Battery', 5: 'MBC2', 6: 'MBC2 + Battery', 8: 'ROM + RAM', 9: 'ROM + RAM + Battery', 11: 'MMM01', 12: 'MMM01 + RAM', 13: 'MMM01 + RAM + Battery', 15: 'MBC3 + Timer + Battery', 16: 'MBC3 + Timer + RAM + Battery', 17: 'MBC3', 18: 'MBC3 + RAM', 19: 'MBC3 + RAM + Battery', 25: 'MBC5', 26: 'MBC5 + RAM', 27: 'MBC5 + RAM + Battery', 28: 'MBC5 + Rumble', 29: 'MBC5 + Rumble + RAM', 30: 'MBC5 + Rumble + RAM + Battery', 32: 'MBC6', 34: 'MBC7 + Sensor + Rumble + RAM + Battery', 252: 'Pocket Camera', 253: 'Bandai TAMA5', 254: 'HuC3', 255: 'HuC1 + RAM + Battery'}
GB_NINTENDO_LOGO = bytes([0xCE, 0xED, 0x66, 0x66, 0xCC, 0x0D, 0x00, 0x0B, 0x03, 0x73, 0x00, 0x83, 0x00, 0x0C, 0x00, 0x0D, 0x00, 0x08, 0x11, 0x1F, 0x88, 0x89, 0x00, 0x0E, 0xDC, 0xCC, 0x6E, 0xE6, 0xDD, 0xDD, 0xD9, 0x99, 0xBB, 0xBB, 0x67, 0x63, 0x6E, 0x0E, 0xEC, 0xCC, 0xDD, 0xDC, 0x99, 0x9F, 0xBB, 0xB9, 0x33, 0x3E])
GB_RAM_SIZES = {0: 0, 1: 2048, 2: 8192, 3: 32768, 4: 131072, 5: 65536}
GB_ROM_SIZES = {0: 32768, 1: 65536, 2: 131072, 3: 262144, 4: 524288, 5: 1048576, 6: 2097152, 7: 4194304, 8: 8388608, 82: 1179648, 83: 1310720, 84: 1572864}
GB_DESTINATIONS = {
    0x00: ("Japan", Region.JAPAN),
    0x01: ("Non-Japan (International)", Region.USA | Region.EUROPE),
}

# GBA constants
GBA_HEADER_SIZE = 0xC0
GBA_REGIONS = {
    0x00:     ("Japan", Region.JAPAN),
    ord('J'): ("Japan", Region.JAPAN),
    0x01:     ("USA", Region.USA),
    ord('U'): ("USA", Region.USA),
    0x02:     ("Europe", Region.EUROPE),
    ord('E'): ("Europe", Region.EUROPE),
    ord('P'): ("Europe", Region.EUROPE),
}
GBA_GAME_CODE_REGIONS = { # last letter of the game code
    'J': ("Japan", Region.JAPAN),
    'E': ("USA", Region.USA),
    'P': ("Europe", Region.EUROPE),
    'D': ("Germany", Region.EUROPE),
    'F': ("France", Region.EUROPE),
    'I': ("Italy", Region.EUROPE),
    'S': ("Spain", Region.EUROPE),
    'H': ("Netherlands", Region.EUROPE),
    'X': ("Europe", Region.EUROPE),
    'Y': ("Europe", Region.EUROPE),
    'U': ("Australia", Region.EUROPE),
    'C': ("China", Region.CHINA),
    'K': ("Korea", Region.KOREA),
}

# Genesis constants
GENESIS_HEADER_SIZE = 0x200
GENESIS_CONSOLE_NAMES = ["SEGA GENESIS", "SEGA MEGA DRIVE", "SEGA 32X", "SEGA EVERDRIVE", "SEGA SSF", "SEGA MEGAWIFI", "SEGA PICO", "SEGA TERA68K", "SEGA TERA286"]
GENESIS_DEVICE_SUPPORT = {'J': '3-button Controller', '6': '6-button Controller', '0': 'Master System Controller', 'A': 'Analog Joystick', '4': 'Multitap', 'G': 'Lightgun', 'L': 'Activator', 'M': 'Mouse', 'B': 'Trackball', 'T': 'Tablet', 'V': 'Paddle', 'K': 'Keyboard or Keypad', 'R': 'RS-232', 'P': 'Printer', 'C': 'CD-ROM (Sega CD)', 'F': 'Floppy Drive', 'D': 'Download'}
GENESIS_REGION_SUPPORT = {'J': 'Japan', 'U': 'Americas', 'E': 'Europe'}
GENESIS_REGIONS = {
    'J': ("Japan (NTSC-J)", Region.JAPAN),
    'U': ("USA (NTSC-U)", Region.USA),
    'E': ("Europe (PAL)", Region.EUROPE),
    'A': ("Asia (NTSC)", Region.ASIA),
    'B': ("Brazil (PAL-M)", Region.EUROPE),
    'C': ("China (NTSC)", Region.CHINA),
    'F': ("France (PAL)", Region.EUROPE),
    'K': ("Korea (NTSC)", Region.KOREA),
    'L': ("UK (PAL)", Region.EUROPE),
    'S': ("Scandinavia (PAL)", Region.EUROPE),
    'T': ("Taiwan (NTSC)", Region.ASIA),
    '4': ("USA/Europe (NTSC/PAL)", Region.USA | Region.EUROPE),
}

# N64 constants
N64_HEADER_SIZE = 0x40
N64_BYTE_ORDERS = { # first word --> (byte order, word size to reverse)
    b'\x80\x37\x12\x40': ("Big-endian (z64)", 1),
    b'\x37\x80\x40\x12': ("Byte-swapped (v64)", 2),
    b'\x40\x12\x37\x80': ("Little-endian (n64)", 4),
}
N64_REGIONS = {
    'E': ("USA (NTSC)", Region.USA),
    'J': ("Japan (NTSC)", Region.JAPAN),
    'P': ("Europe (PAL)", Region.EUROPE),
    'D': ("Germany (PAL)", Region.EUROPE),
    'F': ("France (PAL)", Region.EUROPE),
    'U': ("USA (Legacy)", Region.USA),
    'A': ("Asia (NTSC)", Region.ASIA),
    'B': ("Brazil (PAL-M)", Region.USA | Region.EUROPE),
    'C': ("China (NTSC)", Region.CHINA),
    'I': ("Italy (PAL)", Region.EUROPE),
    'K': ("Korea (NTSC)", Region.KOREA),
    'N': ("Canada (NTSC)", Region.USA),
    'S': ("Spain (PAL)", Region.EUROPE),
    'X': ("Europe (PAL)", Region.EUROPE),
    'Y': ("Europe (PAL)", Region.EUROPE),
}

# NES constants
NES_HEADER_SIZE = 16
NES_MAGIC_WORD = b'NES\x1a'
NES_INES_REGIONS = {
    0: ("NTSC (USA/Japan)", Region.USA | Region.JAPAN),
    1: ("PAL (Europe/Oceania)", Region.EUROPE),
}
NES_NES2_REGIONS = {
    0: ("NTSC (USA/Japan)", Region.USA | Region.JAPAN),
    1: ("PAL (Europe/Oceania)", Region.EUROPE),
    2: ("Multi-region", Region.WORLD),
    3: ("Dendy (Russia)", Region.RUSSIA),
}

# PSX constants
PSX_MIN_SIZE = 0x2000
PSX_HEADER_WINDOW = 0x20000
PSX_EXECUTABLE_PREFIXES = ['SLUS', 'SCUS', 'SLES', 'SCES', 'SLPS', 'SCPS', 'SLPM'] # priority order
PSX_SERIAL_CHARS = set('0123456789_-.')
PSX_REGION_STRINGS = {
    Region.USA:    "North America (NTSC-U)",
    Region.EUROPE: "Europe (PAL)",
    Region.JAPAN:  "Japan (NTSC-J)",
}

# Sega 8-bit cartridge (Master System / Game Gear) constants
SEGA_HEADER_MAGIC_WORD = b'TMR SEGA'
SEGA_HEADER_STARTS = [0x7FF0, 0x3FF0, 0x1FF0]
SEGA_HEADER_SIZE = 0x10
SEGA_REGIONS = { # high nibble of header byte 0xF
    3: ("SMS Japan", Region.JAPAN),
    4: ("SMS Export", Region.USA | Region.EUROPE),
    5: ("GameGear Japan", Region.JAPAN),
    6: ("GameGear Export", Region.USA | Region.EUROPE),
    7: ("GameGear International", Region.JAPAN | Region.USA | Region.EUROPE),
}
SMS_MIN_SIZE = 0x2000
SMS_REGIONS = {
    3: ("Japan (NTSC)", Region.JAPAN),
    4: ("Europe / Overseas (PAL/NTSC)", Region.USA | Region.EUROPE),
}
SMS_LEGACY_REGION_OFFSET = 0x7FFC
SMS_LEGACY_REGIONS = {0x30: 3, 0x4C: 4} # region byte --> SMS_REGIONS key

# SegaCD constants
SEGACD_HEADER_SIZE = 0x200
SEGACD_MAGIC_WORDS = [bytes(ord(c) for c in w) for w in ['SEGADISCSYSTEM', 'SEGABOOTDISC', 'SEGADISC', 'SEGADATADISC']]
SEGACD_SIGNATURES = ["SEGA CD", "SEGA MEGA"]
SEGACD_REGIONS = {
    0x40: ("Japan (NTSC-J)", Region.JAPAN),
    0x80: ("Europe (PAL)", Region.EUROPE),
    0xC0: ("USA (NTSC-U)", Region.USA),
    0x00: ("Unrestricted/BIOS region", Region.JAPAN | Region.USA | Region.EUROPE),
}
SEGACD_REGION_SUPPORT = {'J': Region.JAPAN, 'U': Region.USA, 'E': Region.EUROPE}

# SNES constants
SNES_LOROM_HEADER_START = 0x7FC0
SNES_HIROM_HEADER_START = 0xFFC0
SNES_COPIER_HEADER_SIZE = 512
SNES_HEADER_SIZE = 0x20
SNES_LOROM_MAP_MODES = {0x20, 0x30, 0x25, 0x35}
SNES_HIROM_MAP_MODES = {0x21, 0x31, 0x22, 0x32}
SNES_HARDWARE = ["ROM", "ROM + RAM", "ROM + RAM + Battery"]
SNES_COPROCESSOR_HARDWARE = {0x3: "ROM + Coprocessor", 0x4: "ROM + Coprocessor + RAM", 0x5: "ROM + Coprocessor + RAM + Battery", 0x6: "ROM + Coprocessor + Battery"}
SNES_COPROCESSORS = {0x0: "DSP", 0x1: "GSU / SuperFX", 0x2: "OBC1", 0x3: "SA-1", 0x4: "S-DD1", 0x5: "S-RTC", 0xE: "Super Game Boy / Satellaview"}
SNES_CUSTOM_COPROCESSORS = {0x00: "SPC7110", 0x01: "ST010 / ST011", 0x02: "ST018", 0x03: "CX4"} # chipset subtype byte before the header
SNES_REGIONS = {
    0x00: ("Japan (NTSC)", Region.JAPAN),
    0x01: ("USA / Canada (NTSC)", Region.USA),
    0x02: ("Europe / Oceania / Asia (PAL)", Region.EUROPE | Region.ASIA),
    0x03: ("Sweden / Scandinavia (PAL)", Region.EUROPE),
    0x04: ("Finland (PAL)", Region.EUROPE),
    0x05: ("Denmark (PAL)", Region.EUROPE),
    0x06: ("France (PAL)", Region.EUROPE),
    0x07: ("Netherlands (PAL)", Region.EUROPE),
    0x08: ("Spain (PAL)", Region.EUROPE),
    0x09: ("Germany (PAL)", Region.EUROPE),
    0x0A: ("Italy (PAL)", Region.EUROPE),
    0x0B: ("China (PAL)", Region.CHINA),
    0x0C: ("Indonesia (PAL)", Region.EUROPE | Region.ASIA),
    0x0D: ("South Korea (NTSC)", Region.KOREA),
    0x0E: ("Common / International", Region.USA | Region.EUROPE | Region.JAPAN | Region.ASIA),
    0x0F: ("Canada (NTSC)", Region.USA),
    0x10: ("Brazil (NTSC)", Region.USA),
    0x11: ("Australia (PAL)", Region.EUROPE),
    0x12: ("Other (Variation 1)", Region.UNKNOWN),
    0x13: ("Other (Variation 2)", Region.UNKNOWN),
    0x14: ("Other (Variation 3)", Region.UNKNOWN),
}

# base class of all errors raised while analyzing a ROM
class RomIDError(Exception):
    pass

# file extension doesn't map to any supported console
class UnsupportedFormatError(RomIDError):
    def __init__(self, path):
        self.path = path
        super().__init__("Unsupported format: Unrecognized ROM file extension for dispatch: %s" % path)

# ROM data is shorter than the header window of its console
class DataTooSmallError(RomIDError):
    def __init__(self, file_size, required_size, detail=''):
        self.file_size = file_size; self.required_size = required_size; self.detail = detail
        super().__init__(("ROM data too small: %d bytes, requires at least %d bytes. %s" % (file_size, required_size, detail)).strip())

# required magic bytes are missing
class InvalidSignatureError(RomIDError):
    def __init__(self, detail):
        self.detail = detail
        super().__init__("Invalid header: %s" % detail)

# archive has no entry with a supported ROM extension
class NoSupportedRomError(RomIDError):
    def __init__(self, path):
        self.path = path
        super().__init__("No supported ROM files found within the zip archive: %s" % path)

# archive has supported entries, but every one of them failed analysis
class NoValidHeaderFoundError(RomIDError):
    def __init__(self, path, errors):
        self.path = path; self.errors = errors # list of (entry name, error)
        super().__init__("No valid ROM header found within the zip archive: %s (%s)" % (path, '; '.join('%s: %s' % (name, e) for name, e in errors)))

# failure reported by the ZIP reader
class ArchiveError(RomIDError):
    KIND = "Archive error"
    def __init__(self, path, message):
        self.path = path
        super().__init__("%s: %s: %s" % (self.KIND, path, message))

# failure reported by the CHD reader / hunk codecs
class CodecError(ArchiveError):
    KIND = "CHD error"

# print a log message (if the current verbosity allows it)
def print_log(message='', end='\n', file=None, level=LOG_NORMAL):
    if level > LOG_LEVEL:
        return
    if file is None:
        file = sys.stderr
    print(message, end=end, file=file); file.flush()

# set verbosity of print_log
def set_log_level(level):
    global LOG_LEVEL
    LOG_LEVEL = level

# print an error message and exit
def error(message, exitcode=1):
    print(message, file=sys.stderr); sys.exit(exitcode)

# check if a file doesn't exist and throw an error if it does
def check_not_exists(fn):
    if isfile(fn) or isdir(fn):
        error("File/folder exists: %s" % fn)

# open a file (automatically handle gzip and stdin/stdout)
def open_file(fn, mode='rt', bufsize=DEFAULT_BUFSIZE):
    # standard output/input
    if fn == 'stdout':
        return sys.stdout
    elif fn == 'stdin':
        return sys.stdin

    # GZIP files
    elif fn.split('.')[-1].strip().lower() == 'gz':
        if mode not in FILE_MODES_GZ:
            error("Invalid gzip file mode: %s" % mode)
        elif 'r' in mode:
            return gopen(fn, mode)
        else:
            return gopen(fn, mode, compresslevel=9)

    # Regular files
    else:
        return open(fn, mode, buffering=bufsize)

# get the (lower-case) extension of a filename (empty string if there is none)
def get_extension(fn):
    fn = basename(fn.strip()).lower()
    for ext in STRIP_EXT:
        if fn.endswith('.%s' % ext):
            fn = fn[:-len(ext)-1]
    if '.' not in fn:
        return ''
    return fn.split('.')[-1].strip()

# decode printable ASCII from header bytes (anything else becomes a space)
def header_text(raw):
    return ''.join(chr(v) if ord(' ') <= v <= ord('~') else ' ' for v in raw).strip()

# throw DataTooSmallError if data can't hold a header window
def check_size(data, required_size, detail):
    if len(data) < required_size:
        raise DataTooSmallError(len(data), required_size, detail)

# start a reader's output dict
def new_analysis(source_name, system):
    return {'source_name': source_name, 'system': system}

# add region fields to a reader's output dict (mismatch is checked against the filename)
def set_region(out, region, region_string):
    out['region'] = Region(region); out['region_string'] = region_string
    out['region_mismatch'] = check_region_mismatch(out['source_name'], out['region'])
    if out['region_mismatch']:
        print_log("[!] Region mismatch in %s: header says %s" % (out['source_name'], out['region']), level=LOG_VERBOSE)
    return out

# analyze NES ROM: https://www.nesdev.org/wiki/INES and https://www.nesdev.org/wiki/NES_2.0
def analyze_nes(data, source_name):
    check_size(data, NES_HEADER_SIZE, "NES header")
    if data[0:4] != NES_MAGIC_WORD:
        raise InvalidSignatureError("Missing NES signature (NES\\x1A) in %s" % source_name)
    is_nes2 = (data[7] & 0x0C) == 0x08
    if is_nes2:
        region_byte = data[12] & 0x03; region_string, region = NES_NES2_REGIONS[region_byte]
        prg_rom_size = nes2_rom_size(data[4], data[9] & 0x0F, 16384)
        chr_rom_size = nes2_rom_size(data[5], data[9] >> 4, 8192)
        mapper = (data[6] >> 4) | (data[7] & 0xF0) | ((data[8] & 0x0F) << 8)
    else:
        region_byte = data[9] & 0x01; region_string, region = NES_INES_REGIONS[region_byte]
        prg_rom_size = data[4] * 16384; chr_rom_size = data[5] * 8192
        mapper = (data[6] >> 4) | (data[7] & 0xF0)

    # https://www.nesdev.org/wiki/INES#Flags_6
    if (data[6] & 0b00001000) != 0:
        mirroring = "Four-screen"
    elif (data[6] & 0b00000001) != 0:
        mirroring = "Vertical"
    else:
        mirroring = "Horizontal"

    out = new_analysis(source_name, "Nintendo Entertainment System (NES)")
    out.update({
        'header_format': "NES 2.0" if is_nes2 else "iNES",
        'is_nes2_format': is_nes2,
        'region_byte_value': region_byte,
        'mapper': mapper,
        'prg_rom_size': prg_rom_size,
        'chr_rom_size': chr_rom_size,
        'mirroring': mirroring,
        'battery': (data[6] & 0b00000010) != 0,
        'trainer': (data[6] & 0b00000100) != 0,
    })
    return set_region(out, region, region_string)

# NES 2.0 PRG/CHR size (MSB nibble 0xF means exponent-multiplier notation)
def nes2_rom_size(lsb, msb, unit):
    if msb == 0x0F:
        return (2 ** (lsb >> 2)) * (((lsb & 0b11) * 2) + 1)
    return ((msb << 8) | lsb) * unit

# check if SNES checksum + complement at a header start add up to 0xFFFF
def validate_snes_checksum(data, header_start):
    if header_start + SNES_HEADER_SIZE > len(data):
        return False
    complement, checksum = unpack('<HH', data[header_start + 0x1C : header_start + 0x20])
    return ((complement + checksum) & 0xFFFF) == 0xFFFF

# check if the SNES map mode byte at a header start is one of a set of values
def check_snes_map_mode(data, header_start, map_modes):
    return header_start + 0x15 < len(data) and data[header_start + 0x15] in map_modes

# find SNES header: returns (header start, mapping type, copier header present)
def detect_snes_mapping(data):
    # skip optional 512-byte copier header: https://snes.nesdev.org/wiki/ROM_file_formats#Detecting_Headered_ROM
    copier_header = len(data) >= SNES_COPIER_HEADER_SIZE and (len(data) % 1024) == SNES_COPIER_HEADER_SIZE
    shift = SNES_COPIER_HEADER_SIZE if copier_header else 0
    lorom_start = SNES_LOROM_HEADER_START + shift; hirom_start = SNES_HIROM_HEADER_START + shift
    lorom_checksum = validate_snes_checksum(data, lorom_start); lorom_map_mode = check_snes_map_mode(data, lorom_start, SNES_LOROM_MAP_MODES)
    hirom_checksum = validate_snes_checksum(data, hirom_start); hirom_map_mode = check_snes_map_mode(data, hirom_start, SNES_HIROM_MAP_MODES)

    # most confident first; LoROM is the more common layout if nothing checks out
    if hirom_checksum and hirom_map_mode:
        header_start = hirom_start; mapping_type = "HiROM"
    elif lorom_checksum and lorom_map_mode:
        header_start = lorom_start; mapping_type = "LoROM"
    elif hirom_checksum:
        header_start = hirom_start; mapping_type = "HiROM (Map Mode Unverified)"
    elif lorom_checksum:
        header_start = lorom_start; mapping_type = "LoROM (Map Mode Unverified)"
    else:
        header_start = lorom_start; mapping_type = "LoROM (Unverified)"
    if header_start + SNES_HEADER_SIZE > len(data):
        raise DataTooSmallError(len(data), header_start + SNES_HEADER_SIZE, "SNES header at offset 0x%X (%s) is out of range" % (header_start, mapping_type))
    return header_start, mapping_type, copier_header

# analyze SNES ROM: https://snes.nesdev.org/wiki/ROM_header#Cartridge_header
def analyze_snes(data, source_name):
    header_start, mapping_type, copier_header = detect_snes_mapping(data)
    header = data[header_start : header_start + SNES_HEADER_SIZE]
    map_mode = header[0x15]; chipset = header[0x16]; region_code = header[0x19]
    region_string, region = SNES_REGIONS.get(region_code, ("Unknown", Region.UNKNOWN))

    # https://en.wikibooks.org/wiki/Super_NES_Programming/SNES_memory_map#How_do_I_recognize_the_ROM_type?
    rom_type = "HiROM" if (map_mode & 0b00000001) != 0 else "LoROM"
    if (map_mode & 0b00000100) != 0:
        rom_type = "Ex%s" % rom_type

    # https://snes.nesdev.org/wiki/ROM_header#$FFD6
    hardware = None
    if chipset < len(SNES_HARDWARE):
        hardware = SNES_HARDWARE[chipset]
    elif (chipset & 0x0F) in SNES_COPROCESSOR_HARDWARE:
        hardware = SNES_COPROCESSOR_HARDWARE[chipset & 0x0F]
        if (chipset >> 4) == 0xF and header_start > 0:
            coprocessor = SNES_CUSTOM_COPROCESSORS.get(data[header_start - 1])
        else:
            coprocessor = SNES_COPROCESSORS.get(chipset >> 4)
        if coprocessor is not None:
            hardware = hardware.replace(" + Coprocessor", " + Coprocessor (%s)" % coprocessor)

    out = new_analysis(source_name, "Super Nintendo (SNES)")
    out.update({
        'game_title': header_text(header[0 : 21]),
        'mapping_type': mapping_type,
        'header_offset': header_start,
        'copier_header': copier_header,
        'checksum_valid': validate_snes_checksum(data, header_start),
        'rom_type': rom_type,
        'fast_slow_rom': 'FastROM' if (map_mode & 0b00010000) != 0 else 'SlowROM',
        'hardware': hardware,
        'developer_id': header[0x1A],
        'rom_version': header[0x1B],
        'checksum': '0x%s' % hex(unpack('<H', header[0x1E : 0x20])[0])[2:].zfill(4),
        'region_code': region_code,
    })
    return set_region(out, region, region_string)

# analyze GB/GBC ROM: https://gbdev.io/pandocs/The_Cartridge_Header.html
def analyze_gb(data, source_name):
    check_size(data, GB_HEADER_SIZE, "Game Boy header")
    cgb_flag = data[0x143]
    if cgb_flag in GB_CGB_FLAGS:
        system_type = "Game Boy Color (GBC)"; title = data[0x134 : 0x13F]
    else:
        system_type = "Game Boy (GB)"; title = data[0x134 : 0x143]

    # parse CGB flag (whether or not GameBoy Color features are supported)
    if cgb_flag == 0x80:
        cgb_mode = "GBC (supports GB)"
    elif cgb_flag == 0xC0:
        cgb_mode = "GBC only"
    elif (cgb_flag & 0b00001100) != 0:
        cgb_mode = "PGB"
    else: # probably old GB game where this byte is part of title
        cgb_mode = "GB"

    # header checksum covers 0x134-0x14C
    header_checksum = 0
    for v in data[0x134 : 0x14D]:
        header_checksum = (header_checksum - v - 1) & 0xFF

    destination_code = data[0x14A]
    region_string, region = GB_DESTINATIONS.get(destination_code, ("Unknown Code", Region.UNKNOWN))
    out = new_analysis(source_name, system_type)
    out.update({
        'system_type': system_type,
        'game_title': header_text(title),
        'cgb_mode': cgb_mode,
        'sgb_support': data[0x146] == 0x03,
        'cartridge_type': GB_CARTRIDGE_TYPES.get(data[0x147], "Unknown"),
        'rom_size': GB_ROM_SIZES.get(data[0x148], "Unknown"),
        'ram_size': GB_RAM_SIZES.get(data[0x149], "Unknown"),
        'rom_version': data[0x14C],
        'nintendo_logo_valid': data[0x104 : 0x134] == GB_NINTENDO_LOGO,
        'header_checksum_valid': header_checksum == data[0x14D],
        'destination_code': destination_code,
    })
    return set_region(out, region, region_string)

# analyze GBA ROM: http://problemkaputt.de/gbatek-gba-cartridge-header.htm
def analyze_gba(data, source_name):
    check_size(data, GBA_HEADER_SIZE, "GBA header")
    game_code = header_text(data[0xAC : 0xB0]); region_code = data[0xB4]
    region_string, region = GBA_REGIONS.get(region_code, ("Unknown", Region.UNKNOWN))
    if region == Region.UNKNOWN and len(game_code) == 4 and game_code[3] in GBA_GAME_CODE_REGIONS:
        region_string, region = GBA_GAME_CODE_REGIONS[game_code[3]]
    out = new_analysis(source_name, "Game Boy Advance (GBA)")
    out.update({
        'game_title': header_text(data[0xA0 : 0xAC]),
        'game_code': game_code,
        'maker_code': header_text(data[0xB0 : 0xB2]),
        'main_unit_code': data[0xB3],
        'software_version': data[0xBC],
        'region_code': region_code,
    })
    return set_region(out, region, region_string)

# convert N64 data to big-endian by reversing each word of word_size bytes
def n64_convert_endianness(data, word_size=2):
    if len(data) % word_size != 0:
        raise ValueError("Can only convert data whose length is a multiple of %d" % word_size)
    out = bytearray(len(data))
    for i in range(0, len(data), word_size):
        out[i : i + word_size] = data[i : i + word_size][::-1]
    return bytes(out)

# analyze N64 ROM: https://en64.shoutwiki.com/wiki/ROM#Cartridge_ROM_Header
def analyze_n64(data, source_name):
    check_size(data, N64_HEADER_SIZE, "N64 header")
    header = bytes(data[0 : N64_HEADER_SIZE])

    # determine byte order from first word: https://en64.shoutwiki.com/wiki/ROM
    if header[0:4] in N64_BYTE_ORDERS:
        byte_order, word_size = N64_BYTE_ORDERS[header[0:4]]
        if word_size != 1:
            header = n64_convert_endianness(header, word_size=word_size)
    else:
        byte_order = "Unknown (assuming big-endian)"
    country_code = header_text(header[0x3E : 0x3F])
    region_string, region = N64_REGIONS.get(country_code, ("Unknown Code", Region.UNKNOWN))
    out = new_analysis(source_name, "Nintendo 64 (N64)")
    out.update({
        'game_title': header_text(header[0x20 : 0x34]),
        'cartridge_id': header_text(header[0x3C : 0x3E]),
        'country_code': country_code,
        'version': header[0x3F],
        'byte_order': byte_order,
    })
    return set_region(out, region, region_string)

# find "TMR SEGA" header of a Master System / Game Gear ROM (None if absent)
def find_sega_header(data):
    for header_start in SEGA_HEADER_STARTS:
        if header_start + SEGA_HEADER_SIZE <= len(data) and data[header_start : header_start + len(SEGA_HEADER_MAGIC_WORD)] == SEGA_HEADER_MAGIC_WORD:
            return header_start
    return None

# analyze Master System ROM: https://www.smspower.org/Development/ROMHeader
def analyze_mastersystem(data, source_name):
    check_size(data, SMS_MIN_SIZE, "Master System header")
    header_start = find_sega_header(data); region_code = None
    if header_start is not None:
        region_code = data[header_start + 0xF] >> 4
    elif len(data) > SMS_LEGACY_REGION_OFFSET:
        region_code = SMS_LEGACY_REGIONS.get(data[SMS_LEGACY_REGION_OFFSET])
    if region_code in SMS_REGIONS:
        region_string, region = SMS_REGIONS[region_code]
    elif region_code in SEGA_REGIONS:
        region_string, region = SEGA_REGIONS[region_code]
    else:
        region_string, region = ("Unknown", Region.UNKNOWN)
    out = new_analysis(source_name, "Sega Master System")
    out.update({
        'header_offset': header_start,
        'region_code': region_code,
    })
    return set_region(out, region, region_string)

# analyze Game Gear ROM (falls back to the filename if the header has no region)
def analyze_gamegear(data, source_name):
    header_start = find_sega_header(data); region_code = None
    if header_start is not None:
        region_code = data[header_start + 0xF] >> 4
    out = new_analysis(source_name, "Sega Game Gear")
    out.update({
        'header_offset': header_start,
        'region_code': region_code,
        'region_found': region_code in SEGA_REGIONS,
    })
    if out['region_found']:
        region_string, region = SEGA_REGIONS[region_code]
    else:
        region = infer_region_from_filename(source_name); region_string = str(region)
    return set_region(out, region, region_string)

# decode Genesis device support characters
def genesis_device_support(raw):
    return ' / '.join(sorted(GENESIS_DEVICE_SUPPORT.get(c, c) for c in header_text(raw) if c != ' '))

# analyze Genesis / Mega Drive / 32X ROM: https://plutiedev.com/rom-header
def analyze_genesis(data, source_name):
    check_size(data, GENESIS_HEADER_SIZE, "Genesis header")
    console_name = header_text(data[0x100 : 0x110])
    if not any(console_name.startswith(name) for name in GENESIS_CONSOLE_NAMES):
        print_log("WARNING: Unexpected Genesis system type in %s: '%s'" % (source_name, console_name))

    # first region character uses the extended table; later J/U/E characters widen the region
    region_field = header_text(data[0x1F0 : 0x1F3]); region_code = data[0x1F0]
    region_string, region = GENESIS_REGIONS.get(chr(region_code), ("Unknown Code", Region.UNKNOWN))
    if region != Region.UNKNOWN:
        labels = [region_string]; seen = {chr(region_code)}
        for c in region_field[1:]:
            if c in GENESIS_REGION_SUPPORT and c not in seen:
                extra_string, extra_region = GENESIS_REGIONS[c]
                labels.append(extra_string); region |= extra_region; seen.add(c)
        region_string = ' / '.join(labels)

    out = new_analysis(source_name, "Sega 32X" if console_name.startswith("SEGA 32X") else "Sega Genesis / Mega Drive")
    out.update({
        'console_name': console_name,
        'copyright': header_text(data[0x110 : 0x120]),
        'domestic_title': header_text(data[0x120 : 0x150]),
        'international_title': header_text(data[0x150 : 0x180]),
        'serial': header_text(data[0x180 : 0x18E]),
        'checksum': '0x%s' % hex(unpack('>H', data[0x18E : 0x190])[0])[2:].zfill(4),
        'device_support': genesis_device_support(data[0x190 : 0x1A0]),
        'region_code': region_code,
        'region_support': region_field,
    })
    return set_region(out, region, region_string)

# analyze SegaCD image (0x100-based header, plus disc system header if present)
def analyze_segacd(data, source_name):
    check_size(data, SEGACD_HEADER_SIZE, "SegaCD header")
    signature = header_text(data[0x100 : 0x109]); region_code = data[0x10B]
    if not any(signature.startswith(s) for s in SEGACD_SIGNATURES):
        print_log("WARNING: Unexpected SegaCD signature in %s: '%s'" % (source_name, signature))
    region_string, region = SEGACD_REGIONS.get(region_code, ("Unknown Code", Region.UNKNOWN))
    out = new_analysis(source_name, "Sega CD / Mega CD")
    out.update({
        'signature': signature,
        'region_code': region_code,
    })

    # disc system header (SEGADISCSYSTEM etc.) within the first sector
    magic_word_ind = None
    for magic_word in SEGACD_MAGIC_WORDS:
        magic_word_ind = bytes(data[0 : 0x100 + len(magic_word)]).find(magic_word)
        if magic_word_ind != -1:
            break
    if magic_word_ind is not None and magic_word_ind != -1 and magic_word_ind + 0x1F3 <= len(data):
        region_support = header_text(data[magic_word_ind + 0x1F0 : magic_word_ind + 0x1F3])
        out.update({
            'disc_id': header_text(data[magic_word_ind + 0x000 : magic_word_ind + 0x010]),
            'volume_id': header_text(data[magic_word_ind + 0x010 : magic_word_ind + 0x01B]),
            'title_overseas': header_text(data[magic_word_ind + 0x150 : magic_word_ind + 0x180]),
            'serial': header_text(data[magic_word_ind + 0x180 : magic_word_ind + 0x190]),
            'region_support': region_support,
        })
        if region == Region.UNKNOWN:
            for c in region_support:
                region |= SEGACD_REGION_SUPPORT.get(c, Region.UNKNOWN)
            if region != Region.UNKNOWN:
                region_string = ' / '.join(GENESIS_REGION_SUPPORT[c] for c in region_support if c in GENESIS_REGION_SUPPORT)
    return set_region(out, region, region_string)

# read boot executable serial (e.g. SLUS_012.34) starting at a prefix match
def psx_serial(window, ind):
    serial = window[ind : ind + 4].decode()
    for v in window[ind + 4 : ind + 12]:
        if chr(v) not in PSX_SERIAL_CHARS:
            break
        serial += chr(v)
    return serial

# analyze PSX image by scanning the header area for a boot executable prefix
def analyze_psx(data, source_name):
    window_size = min(len(data), PSX_HEADER_WINDOW)
    if window_size < PSX_MIN_SIZE:
        raise DataTooSmallError(len(data), PSX_MIN_SIZE, "PSX header area")
    window = bytes(data[0 : window_size]).upper()
    code = "N/A"; serial = None
    for prefix in PSX_EXECUTABLE_PREFIXES:
        ind = window.find(prefix.encode())
        if ind != -1:
            code = prefix; serial = psx_serial(window, ind); break
    region = Region.UNKNOWN if serial is None else infer_region_from_header(code)
    out = new_analysis(source_name, "Sony PlayStation (PSX)")
    out.update({
        'code': code,
        'serial': serial,
    })
    return set_region(out, region, PSX_REGION_STRINGS.get(region, "Unknown"))

# dictionary storing all analyze functions
ANALYZE = {
    'GameGear':     analyze_gamegear,
    'GB':           analyze_gb,
    'GBA':          analyze_gba,
    'Genesis':      analyze_genesis,
    'MasterSystem': analyze_mastersystem,
    'N64':          analyze_n64,
    'NES':          analyze_nes,
    'PSX':          analyze_psx,
    'SegaCD':       analyze_segacd,
    'SNES':         analyze_snes,
}
CONSOLES = sorted(ANALYZE.keys())

# fields shown by AnalysisResult.print(): (label, key, format)
PRINT_FIELDS = {
    'GameGear':     [('Region Code', 'region_code', '%s'), ('Header Offset', 'header_offset', '0x%X')],
    'GB':           [('Game Title', 'game_title', '%s'), ('CGB Mode', 'cgb_mode', '%s'), ('Cartridge', 'cartridge_type', '%s'), ('Destination', 'destination_code', '0x%02X')],
    'GBA':          [('Game Title', 'game_title', '%s'), ('Game Code', 'game_code', '%s'), ('Maker Code', 'maker_code', '%s'), ('Region Code', 'region_code', '0x%02X')],
    'Genesis':      [('Console Name', 'console_name', '%s'), ('Domestic Title', 'domestic_title', '%s'), ('Intl. Title', 'international_title', '%s'), ('Serial', 'serial', '%s'), ('Region Code', 'region_code', '0x%02X')],
    'MasterSystem': [('Region Code', 'region_code', '%s'), ('Header Offset', 'header_offset', '0x%X')],
    'N64':          [('Game Title', 'game_title', '%s'), ('Cartridge ID', 'cartridge_id', '%s'), ('Code', 'country_code', '%s'), ('Byte Order', 'byte_order', '%s')],
    'NES':          [('Header Format', 'header_format', '%s'), ('Region Byte', 'region_byte_value', '0x%02X'), ('Mapper', 'mapper', '%d'), ('Mirroring', 'mirroring', '%s')],
    'PSX':          [('Code', 'code', '%s'), ('Serial', 'serial', '%s')],
    'SegaCD':       [('Signature', 'signature', '%s'), ('Title', 'title_overseas', '%s'), ('Serial', 'serial', '%s'), ('Region Code', 'region_code', '0x%02X')],
    'SNES':         [('Game Title', 'game_title', '%s'), ('Mapping', 'mapping_type', '%s'), ('Hardware', 'hardware', '%s'), ('Region Code', 'region_code', '0x%02X')],
}

# analysis of a single ROM (exactly one console per result)
class AnalysisResult:
    # initialize from a console name and a reader's output dict
    def __init__(self, console, fields):
        if console not in ANALYZE:
            raise ValueError("Invalid console: %s" % console)
        self.console = console; self._fields = dict(fields)

    # get a console-specific field
    def __getitem__(self, key):
        return self._fields[key]

    # check if a console-specific field exists
    def __contains__(self, key):
        return key in self._fields

    def __repr__(self):
        return 'AnalysisResult(%r, %r)' % (self.console, self._fields)

    def __eq__(self, other):
        return isinstance(other, AnalysisResult) and self.console == other.console and self._fields == other._fields

    # get a console-specific field (or default)
    def get(self, key, default=None):
        return self._fields.get(key, default)

    # get the name of the analyzed file (or archive entry)
    def source_name(self):
        return self._fields['source_name']

    # get the region declared by the ROM header
    def region(self):
        return self._fields['region']

    # get the human-readable region label (e.g. "NTSC (USA/Japan)")
    def region_string(self):
        return self._fields['region_string']

    # check if the header region disagrees with the filename
    def region_mismatch(self):
        return self._fields['region_mismatch']

    # get the region implied by the filename
    def filename_region(self):
        return infer_region_from_filename(self.source_name())

    # human-readable multi-line summary
    def print(self):
        lines = [self.source_name()]
        rows = [('System', self._fields['system'])]
        for label, key, fmt in PRINT_FIELDS[self.console]:
            value = self._fields.get(key)
            if value is None or value == '':
                continue
            rows.append((label, fmt % value))
        rows.append(('Region', self.region_string()))
        rows.append(('Region Flags', str(self.region())))
        lines += ['%s %s' % (('%s:' % label).ljust(PRINT_LABEL_WIDTH), value) for label, value in rows]
        if self.console == 'GameGear' and not self._fields['region_found']:
            lines.append("Note: Region information not in ROM header, inferred from filename.")
        elif self.console == 'PSX' and self._fields['serial'] is None:
            lines.append("Note: Executable prefix (SLUS/SLES/SLPS) not found in header area. Requires main data track (.bin or .iso).")
        return '\n'.join(lines)

    # JSON-serializable dict (tagged by console)
    def json(self):
        out = {'console': self.console}
        for k, v in self._fields.items():
            out[k] = str(v) if isinstance(v, Region) else v
        return out

# run the reader for a console and wrap its output
def analyze_console(console, data, source_name):
    if console not in ANALYZE:
        raise ValueError("Invalid console: %s\nOptions: %s" % (console, ', '.join(CONSOLES)))
    return AnalysisResult(console, ANALYZE[console](data, source_name))
