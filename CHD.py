#! /usr/bin/env python3
'''
CHD: Read hunks from MAME "Compressed Hunks of Data" (CHD) disc/ROM images
'''

# standard imports
from binascii import crc_hqx
from struct import unpack
from zlib import crc32
import argparse
import lzma
import zlib

# CHD constants
CHD_MAGIC_WORD = b'MComprHD'
CHD_V3_HEADER_SIZE = 120
CHD_V4_HEADER_SIZE = 108
CHD_V5_HEADER_SIZE = 124
CHD_V34_MAP_ENTRY_SIZE = 16
CHD_V34_MAP_ENTRY_TYPES = {1: 'compressed', 2: 'uncompressed', 3: 'mini', 4: 'self', 5: 'parent'}
CHD_V34_MAP_NO_CRC = 0x10
CHD_V5_MAP_HEADER_SIZE = 16
CHD_V5_RAWMAP_ENTRY_SIZE = 12

# CHD v5 compressed map entry types
COMPRESSION_TYPE_0 = 0
COMPRESSION_TYPE_1 = 1
COMPRESSION_TYPE_2 = 2
COMPRESSION_TYPE_3 = 3
COMPRESSION_NONE = 4
COMPRESSION_SELF = 5
COMPRESSION_PARENT = 6
COMPRESSION_RLE_SMALL = 7
COMPRESSION_RLE_LARGE = 8
COMPRESSION_SELF_0 = 9
COMPRESSION_SELF_1 = 10
COMPRESSION_PARENT_SELF = 11
COMPRESSION_PARENT_0 = 12
COMPRESSION_PARENT_1 = 13

# CD-ROM constants (cdzl/cdlz codecs)
CD_MAX_SECTOR_DATA = 2352
CD_MAX_SUBCODE_DATA = 96
CD_FRAME_SIZE = CD_MAX_SECTOR_DATA + CD_MAX_SUBCODE_DATA
CD_SYNC_HEADER = bytes([0x00] + [0xFF] * 10 + [0x00])
CD_MODE_OFFSET = 15
CD_ECC_P_OFFSET = 0x81C
CD_ECC_Q_OFFSET = 0x8C8

# Reed-Solomon lookup tables for CD-ROM ECC
ECC_F_LUT = bytearray(256); ECC_B_LUT = bytearray(256)
for i in range(256):
    j = ((i << 1) ^ (0x11D if (i & 0x80) != 0 else 0)) & 0xFF
    ECC_F_LUT[i] = j; ECC_B_LUT[i ^ j] = i

# error while parsing or decompressing a CHD
class ChdError(Exception):
    pass

# read bits MSB-first from a byte string (zeros past the end)
class BitReader:
    def __init__(self, data):
        self.data = data; self.offset = 0

    # read an unsigned integer of num_bits bits
    def read(self, num_bits):
        out = 0
        for _ in range(num_bits):
            byte_ind = self.offset >> 3
            bit = 0
            if byte_ind < len(self.data):
                bit = (self.data[byte_ind] >> (7 - (self.offset & 7))) & 1
            out = (out << 1) | bit; self.offset += 1
        return out

    # check if more bits were read than exist
    def overflow(self):
        return self.offset > len(self.data) * 8

# canonical Huffman decoder used by the v5 compressed map
class HuffmanDecoder:
    def __init__(self, num_codes=16, max_bits=8):
        self.num_codes = num_codes; self.max_bits = max_bits
        self.num_bits = [0] * num_codes; self.codes = dict()

    # read the RLE-compressed tree of code lengths
    def import_tree_rle(self, reader):
        if self.max_bits >= 16:
            field_bits = 5
        elif self.max_bits >= 8:
            field_bits = 4
        else:
            field_bits = 3
        cur = 0
        while cur < self.num_codes:
            node_bits = reader.read(field_bits)
            if node_bits != 1:
                self.num_bits[cur] = node_bits; cur += 1
                continue
            node_bits = reader.read(field_bits)
            if node_bits == 1:
                self.num_bits[cur] = node_bits; cur += 1
                continue
            repeat = reader.read(field_bits) + 3
            if cur + repeat > self.num_codes:
                raise ChdError("Invalid Huffman tree: too many code lengths")
            for _ in range(repeat):
                self.num_bits[cur] = node_bits; cur += 1
        self.assign_canonical_codes()

    # assign canonical codes from code lengths (longest codes get the smallest values)
    def assign_canonical_codes(self):
        histogram = [0] * 33
        for bits in self.num_bits:
            if bits > self.max_bits:
                raise ChdError("Invalid Huffman tree: code length %d exceeds %d" % (bits, self.max_bits))
            histogram[bits] += 1
        start = 0
        for length in range(32, 0, -1):
            next_start = (start + histogram[length]) >> 1
            if length != 1 and next_start * 2 != (start + histogram[length]):
                raise ChdError("Invalid Huffman tree: code lengths are not canonical")
            histogram[length] = start; start = next_start
        self.codes = dict()
        for symbol, bits in enumerate(self.num_bits):
            if bits > 0:
                self.codes[(bits, histogram[bits])] = symbol; histogram[bits] += 1

    # decode a single symbol
    def decode_one(self, reader):
        code = 0
        for length in range(1, self.max_bits + 1):
            code = (code << 1) | reader.read(1)
            if (length, code) in self.codes:
                return self.codes[(length, code)]
        raise ChdError("Invalid Huffman code in compressed map")

# decompress a raw deflate stream into exactly length bytes
def decompress_zlib(data, length):
    try:
        out = zlib.decompressobj(-15).decompress(data, length)
    except zlib.error as e:
        raise ChdError("zlib decompression failed: %s" % e)
    if len(out) != length:
        raise ChdError("zlib decompression produced %d bytes, expected %d" % (len(out), length))
    return out

# LZMA dictionary size used by the CHD compressor for a given hunk size
def lzma_dict_size(hunk_bytes):
    dict_size = 1 << 26
    if dict_size > hunk_bytes:
        for i in range(11, 31):
            if hunk_bytes <= (2 << i):
                return 2 << i
            if hunk_bytes <= (3 << i):
                return 3 << i
    return dict_size

# decompress a raw LZMA stream (lc=3, lp=0, pb=2, no header) into exactly length bytes
def decompress_lzma(data, length):
    filters = [{'id': lzma.FILTER_LZMA1, 'dict_size': lzma_dict_size(length), 'lc': 3, 'lp': 0, 'pb': 2}]
    try:
        out = lzma.LZMADecompressor(format=lzma.FORMAT_RAW, filters=filters).decompress(data, length)
    except lzma.LZMAError as e:
        raise ChdError("LZMA decompression failed: %s" % e)
    if len(out) != length:
        raise ChdError("LZMA decompression produced %d bytes, expected %d" % (len(out), length))
    return out

# compute one CD-ROM ECC block (P or Q parity) over src into sector[dest:]
def ecc_compute_block(src, major_count, minor_count, major_mult, minor_inc, sector, dest):
    size = major_count * minor_count
    for major in range(major_count):
        index = (major >> 1) * major_mult + (major & 1)
        ecc_a = 0; ecc_b = 0
        for _ in range(minor_count):
            temp = src[index]
            index += minor_inc
            if index >= size:
                index -= size
            ecc_a ^= temp; ecc_b ^= temp
            ecc_a = ECC_F_LUT[ecc_a]
        ecc_a = ECC_B_LUT[ECC_F_LUT[ecc_a] ^ ecc_b]
        sector[dest + major] = ecc_a
        sector[dest + major + major_count] = ecc_a ^ ecc_b

# regenerate P and Q parity of a 2352-byte sector in place (mode 2 parity ignores the address)
def ecc_generate(sector):
    if sector[CD_MODE_OFFSET] == 2:
        src = bytearray(sector[0 : CD_MAX_SECTOR_DATA]); src[12:16] = b'\x00\x00\x00\x00'
    else:
        src = sector
    ecc_compute_block(memoryview(src)[0xC:], 86, 24, 2, 86, sector, CD_ECC_P_OFFSET)
    if src is not sector:
        src[CD_ECC_P_OFFSET : CD_ECC_P_OFFSET + 172] = sector[CD_ECC_P_OFFSET : CD_ECC_P_OFFSET + 172]
    ecc_compute_block(memoryview(src)[0xC:], 52, 43, 86, 88, sector, CD_ECC_Q_OFFSET)

# decompress a CD hunk: sector data (base codec) + subcode (zlib), then restore sync/ECC
def decompress_cd(data, length, base_codec):
    frames = length // CD_FRAME_SIZE
    complen_bytes = 2 if length < 65536 else 3
    ecc_bytes = (frames + 7) // 8
    header_bytes = ecc_bytes + complen_bytes
    if len(data) < header_bytes:
        raise ChdError("CD hunk too small: %d bytes" % len(data))
    complen_base = int.from_bytes(data[ecc_bytes : header_bytes], 'big')
    base = base_codec(data[header_bytes : header_bytes + complen_base], frames * CD_MAX_SECTOR_DATA)
    subcode = decompress_zlib(data[header_bytes + complen_base:], frames * CD_MAX_SUBCODE_DATA)
    out = bytearray(length)
    for frame in range(frames):
        start = frame * CD_FRAME_SIZE
        out[start : start + CD_MAX_SECTOR_DATA] = base[frame * CD_MAX_SECTOR_DATA : (frame + 1) * CD_MAX_SECTOR_DATA]
        out[start + CD_MAX_SECTOR_DATA : start + CD_FRAME_SIZE] = subcode[frame * CD_MAX_SUBCODE_DATA : (frame + 1) * CD_MAX_SUBCODE_DATA]
        if (data[frame // 8] & (1 << (frame % 8))) != 0:
            sector = memoryview(out)[start : start + CD_MAX_SECTOR_DATA]
            sector[0 : len(CD_SYNC_HEADER)] = CD_SYNC_HEADER
            ecc_generate(sector)
    return bytes(out)

# CHD v5 hunk codecs: tag --> function(compressed data, hunk bytes)
CODECS = {
    'zlib': decompress_zlib,
    'lzma': decompress_lzma,
    'cdzl': lambda data, length: decompress_cd(data, length, decompress_zlib),
    'cdlz': lambda data, length: decompress_cd(data, length, decompress_lzma),
}

# read a big-endian unsigned integer of num_bytes bytes
def read_uint(data, offset, num_bytes):
    return int.from_bytes(data[offset : offset + num_bytes], 'big')

# CHD image, opened for reading hunks
class CHD:
    # open and parse a CHD file
    def __init__(self, fn):
        self.fn = fn; self.file = open(fn, 'rb')
        try:
            self.parse_header()
        except Exception:
            self.file.close(); raise

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # close the CHD file
    def close(self):
        self.file.close()

    # read exactly num_bytes at an offset of the CHD file
    def read_at(self, offset, num_bytes):
        self.file.seek(offset); out = self.file.read(num_bytes)
        if len(out) != num_bytes:
            raise ChdError("Unexpected end of file at offset %d (wanted %d bytes, got %d)" % (offset, num_bytes, len(out)))
        return out

    # parse the header (and hunk map) of any supported CHD version
    def parse_header(self):
        header = self.file.read(CHD_V5_HEADER_SIZE)
        if len(header) < 16 or header[0:8] != CHD_MAGIC_WORD:
            raise ChdError("Not a CHD file (missing MComprHD signature): %s" % self.fn)
        header_length, self.version = unpack('>II', header[8:16])
        if self.version == 5:
            self.parse_header_v5(header)
        elif self.version in {3, 4}:
            self.parse_header_v34(header)
        else:
            raise ChdError("Unsupported CHD version: %d" % self.version)

    # https://github.com/mamedev/mame/blob/master/src/lib/util/chd.h (V5 header)
    def parse_header_v5(self, header):
        if len(header) < CHD_V5_HEADER_SIZE:
            raise ChdError("Truncated CHD v5 header")
        self.compressors = list()
        for ind in range(4):
            tag = read_uint(header, 16 + 4 * ind, 4)
            self.compressors.append(None if tag == 0 else tag.to_bytes(4, 'big').decode('ascii', errors='replace'))
        self.logical_bytes, self.map_offset, self.meta_offset = unpack('>QQQ', header[32:56])
        self.hunk_bytes, self.unit_bytes = unpack('>II', header[56:64])
        if self.hunk_bytes == 0:
            raise ChdError("Invalid CHD hunk size: 0")
        self.hunk_count = (self.logical_bytes + self.hunk_bytes - 1) // self.hunk_bytes
        self.has_parent = any(header[104:124])
        if self.compressors[0] is None:
            self.map = None
            self.uncompressed_map = self.read_at(self.map_offset, 4 * self.hunk_count)
        else:
            self.uncompressed_map = None
            self.map = self.decompress_map_v5()

    # https://github.com/mamedev/mame/blob/master/src/lib/util/chd.h (V3/V4 headers)
    def parse_header_v34(self, header):
        if self.version == 4:
            if len(header) < CHD_V4_HEADER_SIZE:
                raise ChdError("Truncated CHD v4 header")
            flags, compression, self.hunk_count, self.logical_bytes, self.meta_offset, self.hunk_bytes = unpack('>IIIQQI', header[16:48])
            map_offset = CHD_V4_HEADER_SIZE
        else:
            if len(header) < CHD_V3_HEADER_SIZE:
                raise ChdError("Truncated CHD v3 header")
            flags, compression, self.hunk_count, self.logical_bytes, self.meta_offset = unpack('>IIIQQ', header[16:44])
            self.hunk_bytes = unpack('>I', header[76:80])[0]
            map_offset = CHD_V3_HEADER_SIZE
        if self.hunk_bytes == 0:
            raise ChdError("Invalid CHD hunk size: 0")
        self.compressors = [None if compression == 0 else 'zlib']
        self.unit_bytes = self.hunk_bytes; self.map_offset = map_offset
        self.has_parent = (flags & 0x1) != 0
        raw = self.read_at(map_offset, CHD_V34_MAP_ENTRY_SIZE * self.hunk_count)
        self.map = list()
        for ind in range(self.hunk_count):
            offset, crc, length_lo, length_hi, entry_flags = unpack('>QIHBB', raw[ind * CHD_V34_MAP_ENTRY_SIZE : (ind + 1) * CHD_V34_MAP_ENTRY_SIZE])
            self.map.append((entry_flags & 0x0F, offset, length_lo | (length_hi << 16), crc, (entry_flags & CHD_V34_MAP_NO_CRC) == 0))
        self.uncompressed_map = None

    # decode the Huffman/RLE compressed v5 hunk map into (type, offset, length, crc16) tuples
    def decompress_map_v5(self):
        map_header = self.read_at(self.map_offset, CHD_V5_MAP_HEADER_SIZE)
        map_bytes = read_uint(map_header, 0, 4); first_offset = read_uint(map_header, 4, 6); map_crc = read_uint(map_header, 10, 2)
        length_bits, self_bits, parent_bits = map_header[12], map_header[13], map_header[14]
        reader = BitReader(self.read_at(self.map_offset + CHD_V5_MAP_HEADER_SIZE, map_bytes))
        decoder = HuffmanDecoder(16, 8); decoder.import_tree_rle(reader)

        # first pass: compression type of each hunk
        types = list(); last_type = 0; repeat = 0
        for _ in range(self.hunk_count):
            if repeat > 0:
                types.append(last_type); repeat -= 1
                continue
            val = decoder.decode_one(reader)
            if val == COMPRESSION_RLE_SMALL:
                types.append(last_type); repeat = 2 + decoder.decode_one(reader)
            elif val == COMPRESSION_RLE_LARGE:
                types.append(last_type); repeat = 2 + 16 + (decoder.decode_one(reader) << 4); repeat += decoder.decode_one(reader)
            else:
                types.append(val); last_type = val

        # second pass: offsets, lengths and CRCs
        entries = list(); rawmap = bytearray()
        cur_offset = first_offset; last_self = 0; last_parent = 0
        for hunk_num, comp_type in enumerate(types):
            offset = cur_offset; length = 0; crc = 0
            if comp_type in {COMPRESSION_TYPE_0, COMPRESSION_TYPE_1, COMPRESSION_TYPE_2, COMPRESSION_TYPE_3}:
                length = reader.read(length_bits); cur_offset += length; crc = reader.read(16)
            elif comp_type == COMPRESSION_NONE:
                length = self.hunk_bytes; cur_offset += length; crc = reader.read(16)
            elif comp_type == COMPRESSION_SELF:
                offset = last_self = reader.read(self_bits)
            elif comp_type == COMPRESSION_PARENT:
                offset = last_parent = reader.read(parent_bits)
            elif comp_type in {COMPRESSION_SELF_0, COMPRESSION_SELF_1}:
                if comp_type == COMPRESSION_SELF_1:
                    last_self += 1
                comp_type = COMPRESSION_SELF; offset = last_self
            elif comp_type == COMPRESSION_PARENT_SELF:
                comp_type = COMPRESSION_PARENT; offset = last_parent = (hunk_num * self.hunk_bytes) // self.unit_bytes
            elif comp_type in {COMPRESSION_PARENT_0, COMPRESSION_PARENT_1}:
                if comp_type == COMPRESSION_PARENT_1:
                    last_parent += self.hunk_bytes // self.unit_bytes
                comp_type = COMPRESSION_PARENT; offset = last_parent
            else:
                raise ChdError("Invalid compression type %d in hunk map" % comp_type)
            entries.append((comp_type, offset, length, crc))
            rawmap += bytes([comp_type]) + length.to_bytes(3, 'big') + offset.to_bytes(6, 'big') + crc.to_bytes(2, 'big')
        if crc_hqx(bytes(rawmap), 0xFFFF) != map_crc:
            raise ChdError("Hunk map CRC mismatch (corrupt CHD)")
        return entries

    # read and decompress a single hunk
    def read_hunk(self, hunk_num):
        if hunk_num < 0 or hunk_num >= self.hunk_count:
            raise ChdError("Hunk %d out of range (hunk count: %d)" % (hunk_num, self.hunk_count))
        if self.version == 5:
            if self.uncompressed_map is not None:
                return self.read_hunk_v5_uncompressed(hunk_num)
            return self.read_hunk_v5(hunk_num)
        return self.read_hunk_v34(hunk_num)

    # hunk of a v5 CHD without compression
    def read_hunk_v5_uncompressed(self, hunk_num):
        block = read_uint(self.uncompressed_map, 4 * hunk_num, 4)
        if block == 0:
            if self.has_parent:
                raise ChdError("Hunk %d requires a parent CHD" % hunk_num)
            return bytes(self.hunk_bytes)
        return self.read_at(block * self.hunk_bytes, self.hunk_bytes)

    # hunk of a v5 CHD with a compressed map
    def read_hunk_v5(self, hunk_num):
        comp_type, offset, length, crc = self.map[hunk_num]
        if comp_type == COMPRESSION_SELF:
            if offset >= hunk_num:
                raise ChdError("Hunk %d references a later hunk (%d)" % (hunk_num, offset))
            return self.read_hunk(offset)
        if comp_type == COMPRESSION_PARENT:
            raise ChdError("Hunk %d requires a parent CHD" % hunk_num)
        if comp_type == COMPRESSION_NONE:
            out = self.read_at(offset, self.hunk_bytes)
        else:
            codec = self.compressors[comp_type]
            if codec not in CODECS:
                raise ChdError("Unsupported CHD codec: %s" % codec)
            out = CODECS[codec](self.read_at(offset, length), self.hunk_bytes)
        if crc_hqx(out, 0xFFFF) != crc:
            raise ChdError("CRC mismatch in hunk %d" % hunk_num)
        return out

    # hunk of a v3/v4 CHD
    def read_hunk_v34(self, hunk_num):
        entry_type, offset, length, crc, check_crc = self.map[hunk_num]
        if entry_type == 1:
            out = decompress_zlib(self.read_at(offset, length), self.hunk_bytes)
        elif entry_type == 2:
            out = self.read_at(offset, self.hunk_bytes)
        elif entry_type == 3:
            out = (offset.to_bytes(8, 'big') * (self.hunk_bytes // 8 + 1))[0 : self.hunk_bytes]
        elif entry_type == 4:
            if offset >= hunk_num:
                raise ChdError("Hunk %d references a later hunk (%d)" % (hunk_num, offset))
            return self.read_hunk(offset)
        elif entry_type == 5:
            raise ChdError("Hunk %d requires a parent CHD" % hunk_num)
        else:
            raise ChdError("Invalid map entry type %d for hunk %d" % (entry_type, hunk_num))
        if check_crc and (crc32(out) & 0xFFFFFFFF) != crc:
            raise ChdError("CRC mismatch in hunk %d" % hunk_num)
        return out

# main program logic: print basic information about CHD files
def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('input', nargs='+', type=str, help="Input CHD File(s)")
    args = parser.parse_args()
    for fn in args.input:
        with CHD(fn) as chd:
            print("%s\tv%d\t%d hunks x %d bytes\t%s" % (fn, chd.version, chd.hunk_count, chd.hunk_bytes, ','.join(c for c in chd.compressors if c is not None) or 'none'))

# run program
if __name__ == "__main__":
    main()
