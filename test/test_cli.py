#!/usr/bin/python3
# encoding: utf-8
# SPDX-FileCopyrightText: 2024 FC (Fay) Stegerman <flx@obfusk.net>
# SPDX-License-Identifier: AGPL-3.0-or-later

import json
import sys

import pytest

import apksigblock as asb

from test_apksigblock import CHANNEL_ID, V2_ID, make_zip, signed_apk


def run(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["apksigblock", *args])
    with pytest.raises(SystemExit) as e:
        asb.main()
    return e.value.code


def test_parse(monkeypatch, capsys, tmp_path):
    apk = tmp_path / "signed.apk"
    apk.write_bytes(signed_apk({V2_ID: b"sig", CHANNEL_ID: b"foo"}))
    assert run(monkeypatch, "parse", str(apk)) == 0
    assert capsys.readouterr().out.splitlines() == [
        "PAIR ID: 0x7109871a",
        "  APK SIGNATURE SCHEME v2 BLOCK",
        "  SIZE: 3",
        "PAIR ID: 0x71777777",
        "  UNKNOWN BLOCK",
        "  SIZE: 3",
    ]


def test_parse_json(monkeypatch, capsys, tmp_path):
    apk = tmp_path / "signed.apk"
    apk.write_bytes(signed_apk({V2_ID: b"sig"}))
    assert run(monkeypatch, "parse", "--json", str(apk)) == 0
    obj = json.loads(capsys.readouterr().out)
    assert obj["pairs"] == [dict(_type="Pair", id=V2_ID, length=7, value="736967")]


def test_sections(monkeypatch, capsys, tmp_path):
    apk = tmp_path / "signed.apk"
    data = signed_apk()
    apk.write_bytes(data)
    assert run(monkeypatch, "sections", "-v", str(apk)) == 0
    out = capsys.readouterr().out
    assert "APK SIGNING BLOCK\n" in out
    assert "  SHA256 (HEX): " in out
    assert out.endswith(f"TOTAL SIZE: {len(data)}\n")


def test_sections_wrap(monkeypatch, capsys, tmp_path):
    monkeypatch.setenv("APKSIGBLOCK_WRAP_COLUMNS", "40")
    monkeypatch.setattr(asb, "WRAP_COLUMNS", 80)
    apk = tmp_path / "signed.apk"
    apk.write_bytes(signed_apk())
    assert run(monkeypatch, "sections", "-v", "--wrap", str(apk)) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[3].startswith("  SHA256 (HEX): ")
    assert lines[4].startswith("    ")
    assert all(len(line) <= 40 for line in lines)


def test_extract_build_replace(monkeypatch, tmp_path):
    apk = tmp_path / "signed.apk"
    apk.write_bytes(signed_apk({V2_ID: b"sig"}))
    block = tmp_path / "block"
    assert run(monkeypatch, "extract", str(apk), str(block)) == 0
    assert asb.parse_pairs(block.read_bytes()) == {V2_ID: b"sig"}
    sig, channel = tmp_path / "sig", tmp_path / "channel"
    sig.write_bytes(b"sig")
    channel.write_bytes(b"channel=foo")
    new_block = tmp_path / "new_block"
    assert run(monkeypatch, "build", "--pair", f"{V2_ID:x}:{sig}",
               "--pair", f"0x{CHANNEL_ID:x}:{channel}", str(new_block)) == 0
    assert asb.parse_pairs(new_block.read_bytes()) == {V2_ID: b"sig", CHANNEL_ID: b"channel=foo"}
    out = tmp_path / "out.apk"
    assert run(monkeypatch, "replace", str(apk), str(new_block), str(out)) == 0
    assert asb.extract_apk_signing_block(str(out)).data == new_block.read_bytes()


def test_build_bad_pair(monkeypatch, capsys, tmp_path):
    assert run(monkeypatch, "build", "--pair", "nope", str(tmp_path / "block")) == 2
    assert "Invalid value for '--pair'" in capsys.readouterr().err


def test_error(monkeypatch, capsys, tmp_path):
    apk = tmp_path / "unsigned.apk"
    apk.write_bytes(make_zip())
    assert run(monkeypatch, "parse", str(apk)) == 3
    assert capsys.readouterr().err == \
        "Error: No APK Signing Block before ZIP Central Directory.\n"


def test_wrap_columns(monkeypatch, capsys, tmp_path):
    monkeypatch.setenv("APKSIGBLOCK_WRAP_COLUMNS", "40")
    monkeypatch.setattr(asb, "WRAP_COLUMNS", 80)
    apk = tmp_path / "signed.apk"
    apk.write_bytes(signed_apk({V2_ID: b"\xff" * 32}))
    assert run(monkeypatch, "parse", "-v", "--wrap", str(apk)) == 0
    lines = capsys.readouterr().out.splitlines()
    assert asb.WRAP_COLUMNS == 40
    assert all(len(line) <= 40 for line in lines)
    assert lines[4].startswith("  VALUE (HEX):")
    assert lines[5].startswith("    ffff")

# vim: set tw=80 sw=4 sts=4 et fdm=marker :
