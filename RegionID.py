#! /usr/bin/env python3
'''
RegionID: Infer game release regions from filenames and ROM headers
'''

# standard imports
from enum import IntFlag
from os.path import basename
import argparse

# release region bitmask (no bits set = region could not be resolved)
class Region(IntFlag):
    UNKNOWN = 0
    JAPAN   = 1 << 0
    USA     = 1 << 1
    EUROPE  = 1 << 2
    RUSSIA  = 1 << 3
    ASIA    = 1 << 4
    CHINA   = 1 << 5
    KOREA   = 1 << 6
    WORLD   = JAPAN | USA | EUROPE | RUSSIA

    # check if no region is set
    def is_empty(self):
        return int(self) == 0

    # render as "Unknown", "World", or e.g. "Japan/USA"
    def __str__(self):
        if self.is_empty():
            return "Unknown"
        names = list(); rest = int(self)
        if (rest & Region.WORLD) == Region.WORLD:
            names.append("World"); rest &= ~int(Region.WORLD)
        names += [name for flag, name in REGION_NAMES if rest & flag]
        return '/'.join(names)

    # f-strings and format() should use the display name too
    def __format__(self, format_spec):
        return format(str(self), format_spec)

# display names in canonical order
REGION_NAMES = [
    (Region.JAPAN,  "Japan"),
    (Region.USA,    "USA"),
    (Region.EUROPE, "Europe"),
    (Region.RUSSIA, "Russia"),
    (Region.ASIA,   "Asia"),
    (Region.CHINA,  "China"),
    (Region.KOREA,  "Korea"),
]

# tag forms of a country name: "(name)", "[name]", or an entry of a "(a, b)" list
def country_tags(*names):
    return [fmt % name for name in names for fmt in ['(%s)', '[%s]', '(%s,', ', %s)', ', %s,']]

# filename tokens (lower-case substrings, e.g. No-Intro / GoodTools tags) and the regions they imply
FILENAME_REGION_TOKENS = [
    (['(w)', '[w]', '(world)', '[world]'], Region.WORLD),
    (['(j)', '[j]', '(jp)', '(jpn)', 'jap', 'ntsc-j'], Region.JAPAN),
    (['(u)', '[u]', '(us)', '[us]', 'usa', 'ntsc-u', '(ca)'] + country_tags('canada'), Region.USA),
    (['(e)', '[e]', '(eu)', 'eur', '(pal)', '[pal]', '(uk)', '(g)', '(f)', '(i)', '(s)', '(sw)'] + country_tags('germany', 'france', 'italy', 'spain', 'australia'), Region.EUROPE),
    (['(ju)', '(uj)'], Region.JAPAN | Region.USA),
    (['(ue)'], Region.USA | Region.EUROPE),
    (['(jue)', '(jeu)', '(uej)'], Region.JAPAN | Region.USA | Region.EUROPE),
    (['(b)'] + country_tags('brazil'), Region.USA | Region.EUROPE),
    (['(r)', '[r]', '(ru)'] + country_tags('russia', 'dendy'), Region.RUSSIA),
    (['(as)', '(hk)', '(tw)'] + country_tags('asia', 'taiwan', 'hong kong'), Region.ASIA),
    (['(c)', '(ch)', '(cn)'] + country_tags('china'), Region.CHINA),
    (['(k)', '[k]', '(kr)'] + country_tags('korea'), Region.KOREA),
]

# header text tokens (upper-case substrings) and the regions they imply
HEADER_REGION_TOKENS = [
    (['MULTI-REGION', 'WORLD', 'COMMON'], Region.WORLD),
    (['JAPAN', 'NTSC-J', 'SLPS', 'SCPS', 'SLPM'], Region.JAPAN),
    (['USA', 'AMERICA', 'CANADA', 'NTSC-U', 'SLUS', 'SCUS'], Region.USA),
    (['EUROPE', 'PAL', 'OCEANIA', 'AUSTRALIA', 'SLES', 'SCES'], Region.EUROPE),
    (['EXPORT', 'OVERSEAS', 'NON-JAPAN', 'INTERNATIONAL', 'BRAZIL'], Region.USA | Region.EUROPE),
    (['RUSSIA', 'DENDY'], Region.RUSSIA),
    (['ASIA', 'TAIWAN'], Region.ASIA),
    (['CHINA'], Region.CHINA),
    (['KOREA'], Region.KOREA),
]

# OR together the regions of every token group found in text
def match_region_tokens(text, tokens):
    region = Region.UNKNOWN
    for patterns, token_region in tokens:
        if any(pattern in text for pattern in patterns):
            region |= token_region
    return region

# infer region from a filename (directories are ignored)
def infer_region_from_filename(name):
    return match_region_tokens(basename(name).lower(), FILENAME_REGION_TOKENS)

# infer region from header-derived text (e.g. "SLUS", "NTSC-J", "Multi-region")
def infer_region_from_header(text):
    return match_region_tokens(text.upper(), HEADER_REGION_TOKENS)

# regions mismatch only if both are known and they share no region
def region_mismatch(inferred, declared):
    if int(inferred) == 0 or int(declared) == 0:
        return False
    return (int(inferred) & int(declared)) == 0

# compare the region implied by a filename against a declared Region (or header text)
def check_region_mismatch(source_name, declared):
    if isinstance(declared, str):
        declared = infer_region_from_header(declared)
    return region_mismatch(infer_region_from_filename(source_name), declared)

# main program logic: print the region implied by each filename
def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('name', nargs='+', type=str, help="Filename(s)")
    args = parser.parse_args()
    for name in args.name:
        print('%s\t%s' % (name, infer_region_from_filename(name)))

# run program
if __name__ == "__main__":
    main()
