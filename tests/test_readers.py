import pytest

from rom_builders import make_gb, make_gba, make_genesis, make_n64, make_nes, make_psx, make_sega8, make_segacd
from RegionID import Region
from RomID import DataTooSmallError, InvalidSignatureError
from RomID import analyze_console, analyze_gamegear, analyze_gb, analyze_gba, analyze_genesis, analyze_mastersystem, analyze_n64, analyze_nes, analyze_psx, analyze_segacd, n64_convert_endianness


@pytest.mark.parametrize("nes2,region_byte,expected_string,expected_region", [
    (False, 0, "NTSC (USA/Japan)", Region.USA | Region.JAPAN),
    (False, 1, "PAL (Europe/Oceania)", Region.EUROPE),
    (True, 2, "Multi-region", Region.WORLD),
    (True, 3, "Dendy (Russia)", Region.RUSSIA),
])
def test_nes_regions(nes2, region_byte, expected_string, expected_region) -> None:
    out = analyze_nes(make_nes(region_byte=region_byte, nes2=nes2), "game.nes")
    assert out['is_nes2_format'] is nes2
    assert out['region_byte_value'] == region_byte
    assert out['region_string'] == expected_string
    assert out['region'] == expected_region


def test_nes_fields() -> None:
    out = analyze_nes(make_nes(flags6=0x13), "game.nes")
    assert out['header_format'] == "iNES"
    assert out['mapper'] == 1
    assert out['prg_rom_size'] == 2 * 16384
    assert out['chr_rom_size'] == 8192
    assert out['mirroring'] == "Vertical"
    assert out['battery'] is True
    assert out['trainer'] is False


def test_nes_ntsc_header_matches_usa_filename() -> None:
    assert analyze_nes(make_nes(region_byte=0), "Contra (U).nes")['region_mismatch'] is False
    assert analyze_nes(make_nes(region_byte=0), "Contra (Europe).nes")['region_mismatch'] is True


def test_nes_invalid_signature() -> None:
    with pytest.raises(InvalidSignatureError):
        analyze_nes(b'NOPE' + bytes(12), "game.nes")


def test_nes_too_small() -> None:
    with pytest.raises(DataTooSmallError) as e:
        analyze_nes(b'NES\x1a', "game.nes")
    assert (e.value.file_size, e.value.required_size) == (4, 16)


def test_gb_too_small() -> None:
    with pytest.raises(DataTooSmallError) as e:
        analyze_gb(bytes(100), "game.gb")
    assert e.value.file_size == 100
    assert e.value.required_size == 0x150


def test_gb_fields() -> None:
    out = analyze_gb(make_gb(title=b'TETRIS', destination=0x00), "Tetris (Japan).gb")
    assert out['system_type'] == "Game Boy (GB)"
    assert out['game_title'] == "TETRIS"
    assert out['cartridge_type'] == "MBC1"
    assert out['rom_size'] == 32768
    assert out['nintendo_logo_valid'] is True
    assert out['header_checksum_valid'] is True
    assert out['region'] == Region.JAPAN
    assert out['region_mismatch'] is False


def test_gbc_international_destination() -> None:
    out = analyze_gb(make_gb(title=b'POKEMON', cgb_flag=0x80, destination=0x01), "Pokemon (Europe).gbc")
    assert out['system_type'] == "Game Boy Color (GBC)"
    assert out['cgb_mode'] == "GBC (supports GB)"
    assert out['region_string'] == "Non-Japan (International)"
    assert out['region'] == Region.USA | Region.EUROPE
    assert out['region_mismatch'] is False
    assert analyze_gb(make_gb(destination=0x01), "Game (Japan).gb")['region_mismatch'] is True


def test_gb_unknown_destination() -> None:
    out = analyze_gb(make_gb(destination=0x33), "game.gb")
    assert out['region_string'] == "Unknown Code"
    assert out['region'] == Region.UNKNOWN


def test_gba_fields() -> None:
    out = analyze_gba(make_gba(title=b'POKEMON EMER', game_code=b'BPEE', region_byte=ord('U')), "Pokemon Emerald (USA).gba")
    assert out['game_title'] == "POKEMON EMER"
    assert out['game_code'] == "BPEE"
    assert out['maker_code'] == "01"
    assert out['region_string'] == "USA"
    assert out['region'] == Region.USA


def test_gba_region_from_game_code() -> None:
    out = analyze_gba(make_gba(game_code=b'BPEP', region_byte=0x7F), "game.gba")
    assert out['region'] == Region.EUROPE


def test_gba_too_small() -> None:
    with pytest.raises(DataTooSmallError):
        analyze_gba(bytes(0xBF), "game.gba")


@pytest.mark.parametrize("byte_order,label", [
    ('z64', "Big-endian (z64)"),
    ('v64', "Byte-swapped (v64)"),
    ('n64', "Little-endian (n64)"),
])
def test_n64_byte_orders(byte_order, label) -> None:
    out = analyze_n64(make_n64(byte_order=byte_order), "Super Mario 64 (USA).z64")
    assert out['byte_order'] == label
    assert out['game_title'] == "SUPER MARIO 64"
    assert out['cartridge_id'] == "SM"
    assert out['country_code'] == "E"
    assert out['region'] == Region.USA
    assert out['region_string'] == "USA (NTSC)"


def test_n64_convert_endianness() -> None:
    assert n64_convert_endianness(b'\x37\x80\x40\x12', word_size=2) == b'\x80\x37\x12\x40'
    assert n64_convert_endianness(b'\x40\x12\x37\x80', word_size=4) == b'\x80\x37\x12\x40'


def test_n64_japan() -> None:
    out = analyze_n64(make_n64(country=b'J'), "Mario (USA).n64")
    assert out['region'] == Region.JAPAN
    assert out['region_mismatch'] is True


@pytest.mark.parametrize("header_start", [0x7FF0, 0x3FF0, 0x1FF0])
def test_mastersystem_header_offsets(header_start) -> None:
    out = analyze_mastersystem(make_sega8(header_start=header_start, region_nibble=4), "Alex Kidd (USA, Europe).sms")
    assert out['header_offset'] == header_start
    assert out['region_string'] == "Europe / Overseas (PAL/NTSC)"
    assert out['region'] == Region.USA | Region.EUROPE
    assert out['region_mismatch'] is False


def test_mastersystem_legacy_region_byte() -> None:
    data = bytearray(make_sega8(header_start=None))
    data[0x7FFC] = 0x30
    out = analyze_mastersystem(bytes(data), "game.sms")
    assert out['header_offset'] is None
    assert out['region'] == Region.JAPAN


def test_mastersystem_too_small() -> None:
    with pytest.raises(DataTooSmallError):
        analyze_mastersystem(bytes(0x1000), "game.sms")


def test_gamegear_header_region() -> None:
    out = analyze_gamegear(make_sega8(region_nibble=7), "Sonic (World).gg")
    assert out['region_found'] is True
    assert out['region_string'] == "GameGear International"
    assert out['region'] == Region.JAPAN | Region.USA | Region.EUROPE


def test_gamegear_region_from_filename() -> None:
    result = analyze_console('GameGear', make_sega8(header_start=None), "Columns (Japan).gg")
    assert result['region_found'] is False
    assert result.region() == Region.JAPAN
    assert result.region_mismatch() is False
    assert "inferred from filename" in result.print()


def test_genesis_fields() -> None:
    out = analyze_genesis(make_genesis(region=b'JUE'), "Sonic (World).md")
    assert out['console_name'] == "SEGA GENESIS"
    assert out['domestic_title'] == "SONIC THE HEDGEHOG"
    assert out['serial'] == "GM 00001009-00"
    assert out['checksum'] == "0x264a"
    assert out['device_support'] == "3-button Controller"
    assert out['region'] == Region.JAPAN | Region.USA | Region.EUROPE
    assert out['region_string'] == "Japan (NTSC-J) / USA (NTSC-U) / Europe (PAL)"
    assert out['region_mismatch'] is False


def test_genesis_unexpected_console_name_warns(capsys) -> None:
    out = analyze_genesis(make_genesis(console_name=b'NOT A SEGA', region=b'U'), "game.md")
    assert out['region'] == Region.USA
    assert "Unexpected Genesis system type" in capsys.readouterr().err


def test_genesis_too_small() -> None:
    with pytest.raises(DataTooSmallError):
        analyze_genesis(make_genesis()[0 : 0x1F0], "game.md")


def test_segacd_fields() -> None:
    out = analyze_segacd(make_segacd(region_code=0x80), "Sonic CD (Europe).scd")
    assert out['signature'] == "SEGA CD"
    assert out['disc_id'] == "SEGADISCSYSTEM"
    assert out['serial'] == "GM MK-4407 -00"
    assert out['region_string'] == "Europe (PAL)"
    assert out['region'] == Region.EUROPE
    assert out['region_mismatch'] is False


def test_segacd_unrestricted_region() -> None:
    out = analyze_segacd(make_segacd(region_code=0x00), "game.scd")
    assert out['region_string'] == "Unrestricted/BIOS region"
    assert out['region'] == Region.JAPAN | Region.USA | Region.EUROPE


def test_segacd_region_from_region_support() -> None:
    out = analyze_segacd(make_segacd(region_code=0x20, region_support=b'JU'), "game.scd")
    assert out['region'] == Region.JAPAN | Region.USA


def test_psx_fields() -> None:
    out = analyze_psx(make_psx(), "Final Fantasy VII (USA).bin")
    assert out['code'] == "SLUS"
    assert out['serial'] == "SLUS_012.34"
    assert out['region'] == Region.USA
    assert out['region_string'] == "North America (NTSC-U)"
    assert out['region_mismatch'] is False


def test_psx_is_case_insensitive_and_checks_filename() -> None:
    out = analyze_psx(make_psx(boot=b'boot=cdrom:\\sles_005.23;1'), "Game (Japan).bin")
    assert out['code'] == "SLES"
    assert out['region'] == Region.EUROPE
    assert out['region_mismatch'] is True


def test_psx_without_executable_prefix() -> None:
    result = analyze_console('PSX', make_psx(boot=None), "game.iso")
    assert result['code'] == "N/A"
    assert result.region() == Region.UNKNOWN
    assert result.region_string() == "Unknown"
    assert "Requires main data track" in result.print()


def test_psx_too_small() -> None:
    with pytest.raises(DataTooSmallError) as e:
        analyze_psx(bytes(0x1000), "game.bin")
    assert e.value.required_size == 0x2000


def test_untagged_title_with_country_word_does_not_mismatch() -> None:
    assert analyze_genesis(make_genesis(region=b'E'), "Fantasia.md")['region_mismatch'] is False
