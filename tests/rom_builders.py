'''
Build synthetic ROM images and CHD containers for the tests
'''

# standard imports
from binascii import crc_hqx
from struct import pack
from zlib import crc32
import lzma
import zlib

# non-standard imports
from CHD import CD_FRAME_SIZE, CD_MAX_SECTOR_DATA, CD_MAX_SUBCODE_DATA, CD_SYNC_HEADER, COMPRESSION_NONE, COMPRESSION_SELF, ecc_generate, lzma_dict_size
from RomID import GB_NINTENDO_LOGO

# NES header (iNES, or NES 2.0 if nes2)
def make_nes(region_byte=0, nes2=False, flags6=0x01):
    header = bytearray(16)
    header[0:4] = b'NES\x1a'; header[4] = 2; header[5] = 1; header[6] = flags6
    if nes2:
        header[7] = 0x08; header[12] = region_byte
    else:
        header[9] = region_byte
    return bytes(header)

# SNES ROM of a given size with a header at header_start (checksum valid unless bad_checksum)
def make_snes(size, header_start=None, map_mode=0x20, region=0x01, chipset=0x02, title=b'SUPER GAME', bad_checksum=False):
    data = bytearray(size)
    if header_start is not None:
        data[header_start : header_start + 21] = title.ljust(21, b' ')
        data[header_start + 0x15] = map_mode
        data[header_start + 0x16] = chipset
        data[header_start + 0x19] = region
        checksum = 0x1234; complement = 0x1234 if bad_checksum else 0xFFFF ^ checksum
        data[header_start + 0x1C : header_start + 0x20] = pack('<HH', complement, checksum)
    return bytes(data)

# GB/GBC ROM with a valid logo and header checksum
def make_gb(title=b'TETRIS', cgb_flag=0x00, destination=0x00, size=0x8000):
    data = bytearray(size)
    data[0x104 : 0x134] = GB_NINTENDO_LOGO
    data[0x134 : 0x134 + len(title)] = title
    data[0x143] = cgb_flag; data[0x147] = 0x01; data[0x148] = 0x00; data[0x14A] = destination
    checksum = 0
    for v in data[0x134 : 0x14D]:
        checksum = (checksum - v - 1) & 0xFF
    data[0x14D] = checksum
    return bytes(data)

# GBA ROM header
def make_gba(title=b'POKEMON EMER', game_code=b'BPEE', region_byte=0x00):
    data = bytearray(0xC0)
    data[0xA0 : 0xAC] = title.ljust(12, b'\x00')
    data[0xAC : 0xB0] = game_code
    data[0xB0 : 0xB2] = b'01'; data[0xB2] = 0x96; data[0xB4] = region_byte
    return bytes(data)

# N64 ROM header in a given byte order ('z64', 'v64' or 'n64')
def make_n64(title=b'SUPER MARIO 64', cartridge_id=b'SM', country=b'E', byte_order='z64'):
    data = bytearray(0x1000)
    data[0:4] = b'\x80\x37\x12\x40'
    data[0x20 : 0x34] = title.ljust(20, b' ')
    data[0x3C : 0x3E] = cartridge_id; data[0x3E : 0x3F] = country; data[0x3F] = 0
    if byte_order == 'v64':
        word_size = 2
    elif byte_order == 'n64':
        word_size = 4
    else:
        return bytes(data)
    return b''.join(bytes(data[i : i + word_size][::-1]) for i in range(0, len(data), word_size))

# Master System / Game Gear ROM with a "TMR SEGA" header
def make_sega8(size=0x8000, header_start=0x7FF0, region_nibble=4):
    data = bytearray(size)
    if header_start is not None:
        data[header_start : header_start + 8] = b'TMR SEGA'
        data[header_start + 0xF] = (region_nibble << 4) | 0xC
    return bytes(data)

# Genesis ROM header
def make_genesis(console_name=b'SEGA GENESIS', region=b'JUE', size=0x400):
    data = bytearray(b' ' * size)
    data[0x100 : 0x110] = console_name.ljust(16, b' ')
    data[0x110 : 0x120] = b'(C)SEGA 1991.APR'
    data[0x120 : 0x150] = b'SONIC THE HEDGEHOG'.ljust(48, b' ')
    data[0x150 : 0x180] = b'SONIC THE HEDGEHOG'.ljust(48, b' ')
    data[0x180 : 0x18E] = b'GM 00001009-00'
    data[0x18E : 0x190] = b'\x26\x4a'
    data[0x190 : 0x1A0] = b'J'.ljust(16, b' ')
    data[0x1F0 : 0x1F0 + len(region)] = region
    return bytes(data)

# SegaCD disc header (disc system header at 0, system name at 0x100)
def make_segacd(region_code=0x80, region_support=b'E', signature=b'SEGA CD', size=0x800):
    data = bytearray(b' ' * size)
    data[0x000 : 0x010] = b'SEGADISCSYSTEM  '
    data[0x010 : 0x01B] = b'SONICCD    '
    data[0x100 : 0x100 + len(signature)] = signature
    data[0x10B] = region_code
    data[0x150 : 0x180] = b'SONIC THE HEDGEHOG-CD'.ljust(48, b' ')
    data[0x180 : 0x190] = b'GM MK-4407 -00  '
    data[0x1F0 : 0x1F3] = region_support.ljust(3, b' ')
    return bytes(data)

# PSX data track prefix containing a boot line (or nothing)
def make_psx(boot=b'BOOT = cdrom:\\SLUS_012.34;1', size=0x9000, offset=0x8000):
    data = bytearray(size)
    if boot is not None:
        data[offset : offset + len(boot)] = boot
    return bytes(data)

# raw deflate (as used by CHD zlib hunks)
def deflate(data):
    c = zlib.compressobj(9, zlib.DEFLATED, -15)
    return c.compress(data) + c.flush()

# raw LZMA (as used by CHD lzma hunks)
def lzma_raw(data, hunk_bytes):
    filters = [{'id': lzma.FILTER_LZMA1, 'dict_size': lzma_dict_size(hunk_bytes), 'lc': 3, 'lp': 0, 'pb': 2}]
    return lzma.compress(data, format=lzma.FORMAT_RAW, filters=filters)

# CHD v5 compressor tag as stored in the header
def codec_tag(name):
    return 0 if name is None else int.from_bytes(name.encode(), 'big')

# CHD v5 header
def chd_v5_header(compressors, logical_bytes, map_offset, hunk_bytes, unit_bytes):
    compressors = list(compressors) + [None] * (4 - len(compressors))
    header = b'MComprHD' + pack('>II', 124, 5) + pack('>IIII', *[codec_tag(c) for c in compressors])
    header += pack('>QQQII', logical_bytes, map_offset, 0, hunk_bytes, unit_bytes)
    return header + bytes(60)

# CHD v5 without compression: hunks are stored at block * hunk_bytes (None = all-zero hunk)
def make_chd_v5_uncompressed(hunks, hunk_bytes, logical_bytes=None):
    if logical_bytes is None:
        logical_bytes = len(hunks) * hunk_bytes
    map_end = 124 + 4 * len(hunks)
    block = (map_end + hunk_bytes - 1) // hunk_bytes
    hunk_map = b''; body = b''
    for hunk in hunks:
        if hunk is None:
            hunk_map += pack('>I', 0)
        else:
            hunk_map += pack('>I', block); body += hunk.ljust(hunk_bytes, b'\x00'); block += 1
    header = chd_v5_header([], logical_bytes, 124, hunk_bytes, hunk_bytes)
    return header + hunk_map + bytes((map_end + hunk_bytes - 1) // hunk_bytes * hunk_bytes - map_end) + body

# write bits MSB-first
class BitWriter:
    def __init__(self):
        self.bits = list()

    def write(self, value, num_bits):
        for i in range(num_bits - 1, -1, -1):
            self.bits.append((value >> i) & 1)

    def data(self):
        bits = self.bits + [0] * (-len(self.bits) % 8)
        return bytes(int(''.join(str(b) for b in bits[i : i + 8]), 2) for i in range(0, len(bits), 8))

# CHD v5 with a compressed map
#   entries: ('codec', compressor index, compressed bytes, raw hunk) / ('none', raw hunk) / ('self', hunk index)
def make_chd_v5_compressed(entries, hunk_bytes, compressors, unit_bytes=None, logical_bytes=None, corrupt_map_crc=False):
    if unit_bytes is None:
        unit_bytes = hunk_bytes
    if logical_bytes is None:
        logical_bytes = len(entries) * hunk_bytes
    length_bits = 24; self_bits = 8
    bits = BitWriter()
    for _ in range(16): # every symbol gets a 4-bit code equal to its value
        bits.write(4, 4)
    types = list()
    for entry in entries:
        if entry[0] == 'codec':
            types.append(entry[1])
        elif entry[0] == 'none':
            types.append(COMPRESSION_NONE)
        else:
            types.append(COMPRESSION_SELF)
    for t in types:
        bits.write(t, 4)

    # offsets are relative to the start of the hunk data, fixed up below
    body = b''; rawmap_entries = list()
    for entry in entries:
        if entry[0] == 'codec':
            crc = crc_hqx(entry[3], 0xFFFF); bits.write(len(entry[2]), length_bits); bits.write(crc, 16)
            rawmap_entries.append((entry[1], len(entry[2]), len(body), crc)); body += entry[2]
        elif entry[0] == 'none':
            crc = crc_hqx(entry[1], 0xFFFF); bits.write(crc, 16)
            rawmap_entries.append((COMPRESSION_NONE, hunk_bytes, len(body), crc)); body += entry[1]
        else:
            bits.write(entry[1], self_bits)
            rawmap_entries.append((COMPRESSION_SELF, 0, None, 0, entry[1]))
    map_data = bits.data()
    first_offset = 124 + 16 + len(map_data)
    rawmap = b''
    for e in rawmap_entries:
        offset = e[4] if e[0] == COMPRESSION_SELF else first_offset + e[2]
        rawmap += bytes([e[0]]) + e[1].to_bytes(3, 'big') + offset.to_bytes(6, 'big') + e[3].to_bytes(2, 'big')
    map_crc = crc_hqx(rawmap, 0xFFFF) ^ (0xFFFF if corrupt_map_crc else 0)
    map_header = pack('>I', len(map_data)) + first_offset.to_bytes(6, 'big') + pack('>H', map_crc) + bytes([length_bits, self_bits, 0, 0])
    header = chd_v5_header(compressors, logical_bytes, 124, hunk_bytes, unit_bytes)
    return header + map_header + map_data + body

# CHD v4: entries are ('zlib', raw hunk) / ('raw', raw hunk) / ('mini', 8 bytes) / ('self', hunk index)
def make_chd_v4(entries, hunk_bytes, bad_crc=False):
    map_end = 108 + 16 * len(entries)
    hunk_map = b''; body = b''
    for kind, value in entries:
        if kind == 'zlib':
            comp = deflate(value); crc = crc32(value) ^ (1 if bad_crc else 0)
            hunk_map += pack('>QIHBB', map_end + len(body), crc, len(comp) & 0xFFFF, len(comp) >> 16, 1); body += comp
        elif kind == 'raw':
            hunk_map += pack('>QIHBB', map_end + len(body), crc32(value), hunk_bytes & 0xFFFF, hunk_bytes >> 16, 2); body += value
        elif kind == 'mini':
            hunk_map += pack('>QIHBB', int.from_bytes(value, 'big'), 0, 0, 0, 3 | 0x10)
        else:
            hunk_map += pack('>QIHBB', value, 0, 0, 0, 4)
    header = b'MComprHD' + pack('>IIIIIQQI', 108, 4, 0, 1, len(entries), len(entries) * hunk_bytes, 0, hunk_bytes) + bytes(60)
    return header + hunk_map + body

# mode 1 CD sector with sync header and regenerated ECC
def make_cd_sector(lba=150, payload=b'PLAYSTATION'):
    sector = bytearray(CD_MAX_SECTOR_DATA)
    sector[0:12] = CD_SYNC_HEADER
    minute, rest = divmod(lba, 75 * 60); second, frame = divmod(rest, 75)
    sector[12:16] = bytes([int(str(minute), 16), int(str(second), 16), int(str(frame), 16), 1])
    sector[16 : 16 + len(payload)] = payload
    ecc_generate(sector)
    return bytes(sector)

# cdzl hunk payload: frames whose ecc flag is set are stored without sync header and ECC
def make_cdzl_hunk(sectors, ecc_frames=(), subcode=None):
    frames = len(sectors)
    if subcode is None:
        subcode = bytes(CD_MAX_SUBCODE_DATA * frames)
    ecc_flags = bytearray((frames + 7) // 8); base = b''
    for frame, sector in enumerate(sectors):
        if frame in ecc_frames:
            ecc_flags[frame // 8] |= 1 << (frame % 8)
            stripped = bytearray(sector); stripped[0:12] = bytes(12); stripped[0x81C : CD_MAX_SECTOR_DATA] = bytes(CD_MAX_SECTOR_DATA - 0x81C)
            base += bytes(stripped)
        else:
            base += sector
    base_comp = deflate(base); sub_comp = deflate(subcode)
    complen_bytes = 2 if frames * CD_FRAME_SIZE < 65536 else 3
    raw = b''.join(sectors[f] + subcode[f * CD_MAX_SUBCODE_DATA : (f + 1) * CD_MAX_SUBCODE_DATA] for f in range(frames))
    return bytes(ecc_flags) + len(base_comp).to_bytes(complen_bytes, 'big') + base_comp + sub_comp, raw
