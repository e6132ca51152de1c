# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import datetime
import json
import shlex
from pathlib import Path

import pytest
from loguru import logger as LOG

from pytcb.ca import CA_CONFIG_FILENAME, CA_ROOT_FILENAME
from pytcb.cli.endorse import ENDORSEMENT_FILENAME
from pytcb.cli.main import main
from pytcb.endorsement import SEV_SNP, decode_record
from pytcb.eventlog import fw_cfg_name

COMMIT = "988881adc9fc3655077dc2d4d757d480b5ea0e11"


@pytest.fixture
def run():
    def f(*cmd):
        args = [str(c) for c in cmd]
        LOG.info(shlex.join(["pytcb"] + args))
        main(args)

    return f


@pytest.fixture
def ca_dir(run, tmp_path: Path) -> Path:
    path = tmp_path / "ca"
    run("create-ca", "--out-dir", path, "--key-type", "ec", "--days", 30)
    return path


@pytest.fixture
def uefi(tmp_path: Path, firmware: bytes) -> Path:
    path = tmp_path / "OVMF.fd"
    path.write_bytes(firmware)
    return path


@pytest.fixture
def endorsement(run, tmp_path: Path, ca_dir: Path, uefi: Path) -> Path:
    events = []
    for i in range(3):
        event = tmp_path / f"event{i}.bin"
        event.write_bytes(f"event {i}".encode())
        events += ["--event", event]

    out_dir = tmp_path / "out"
    run(
        "endorse",
        "--ca-dir",
        ca_dir,
        "--uefi",
        uefi,
        "--out_dir",
        out_dir,
        "--commit",
        COMMIT,
        "--add_snp",
        *events,
    )
    return out_dir / ENDORSEMENT_FILENAME


def test_create_ca(ca_dir: Path):
    config = json.loads((ca_dir / CA_CONFIG_FILENAME).read_text())
    assert config["primarySigningKey"] is not None
    assert (ca_dir / CA_ROOT_FILENAME).exists()
    assert len(list((ca_dir / "keys").glob("*.pem"))) == 2


def test_endorse(endorsement: Path):
    record = decode_record(endorsement.read_bytes())
    assert record.commit == COMMIT
    assert record.capabilities == {SEV_SNP}
    assert record.events.events == (b"event 0", b"event 1", b"event 2")


def test_verify(run, capsys, ca_dir: Path, uefi: Path, endorsement: Path):
    run(
        "verify",
        endorsement,
        "--root-certs",
        ca_dir / CA_ROOT_FILENAME,
        "--uefi",
        uefi,
        "--require-capability",
        SEV_SNP,
    )
    output = capsys.readouterr().out
    assert "Endorsement is valid" in output
    assert COMMIT in output


def test_verify_without_firmware(run, capsys, ca_dir: Path, endorsement: Path):
    run("verify", endorsement, "--root-certs", ca_dir / CA_ROOT_FILENAME)
    assert "firmware not checked" in capsys.readouterr().out


def test_verify_root_directory(run, tmp_path: Path, ca_dir: Path, endorsement: Path):
    roots = tmp_path / "roots"
    roots.mkdir()
    (roots / "tcb-root.pem").write_bytes((ca_dir / CA_ROOT_FILENAME).read_bytes())
    run("verify", endorsement, "--root-certs", roots)


def test_verify_wrong_firmware(run, tmp_path: Path, ca_dir: Path, endorsement: Path):
    other = tmp_path / "other.fd"
    other.write_bytes(b"some other firmware")
    with pytest.raises(SystemExit) as info:
        run(
            "verify",
            endorsement,
            "--root-certs",
            ca_dir / CA_ROOT_FILENAME,
            "--uefi",
            other,
        )
    assert info.value.code == 1


def test_verify_tampered(run, ca_dir: Path, endorsement: Path):
    buf = bytearray(endorsement.read_bytes())
    buf = buf.replace(COMMIT.encode(), b"0" * len(COMMIT))
    endorsement.write_bytes(bytes(buf))

    with pytest.raises(SystemExit) as info:
        run("verify", endorsement, "--root-certs", ca_dir / CA_ROOT_FILENAME)
    assert info.value.code == 1


def test_verify_missing_capability(run, ca_dir: Path, endorsement: Path):
    with pytest.raises(SystemExit) as info:
        run(
            "verify",
            endorsement,
            "--root-certs",
            ca_dir / CA_ROOT_FILENAME,
            "--require-capability",
            "TDX",
        )
    assert info.value.code == 1


def test_verify_expired(run, ca_dir: Path, endorsement: Path):
    later = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=60)
    with pytest.raises(SystemExit):
        run(
            "verify",
            endorsement,
            "--root-certs",
            ca_dir / CA_ROOT_FILENAME,
            "--now",
            later.isoformat(),
        )


def test_rotate(run, tmp_path: Path, ca_dir: Path, uefi: Path, endorsement: Path):
    run("rotate", "--ca-dir", ca_dir, "--version", "uefi-signer/2", "--key-type", "ec")
    config = json.loads((ca_dir / CA_CONFIG_FILENAME).read_text())
    assert config["primarySigningKey"] == "uefi-signer/2"

    out_dir = tmp_path / "rotated"
    run(
        "endorse",
        "--ca-dir",
        ca_dir,
        "--uefi",
        uefi,
        "--out-dir",
        out_dir,
        "--commit",
        COMMIT,
    )
    rotated = out_dir / ENDORSEMENT_FILENAME
    assert decode_record(rotated.read_bytes()).key_version == "uefi-signer/2"

    for path in [endorsement, rotated]:
        run("verify", path, "--root-certs", ca_dir / CA_ROOT_FILENAME, "--uefi", uefi)


def test_rotate_duplicate_version(run, ca_dir: Path):
    config = json.loads((ca_dir / CA_CONFIG_FILENAME).read_text())
    with pytest.raises(SystemExit) as info:
        run(
            "rotate",
            "--ca-dir",
            ca_dir,
            "--version",
            config["primarySigningKey"],
            "--key-type",
            "ec",
        )
    assert info.value.code == 1


def test_pretty(run, capsys, endorsement: Path):
    # Discard what the fixtures printed.
    capsys.readouterr()
    run("pretty", endorsement)
    view = json.loads(capsys.readouterr().out)
    assert view["commit"] == COMMIT
    assert view["capabilities"] == [SEV_SNP]
    assert len(view["events"]) == 3


def test_fw_cfg(run, tmp_path: Path, ca_dir: Path, endorsement: Path):
    out_dir = tmp_path / "fw_cfg"
    run(
        "fw-cfg",
        endorsement,
        "--root-certs",
        ca_dir / CA_ROOT_FILENAME,
        "--out-dir",
        out_dir,
    )
    for i in range(3):
        assert (out_dir / fw_cfg_name(i)).read_bytes() == f"event {i}".encode()
    assert not (out_dir / fw_cfg_name(3)).exists()


@pytest.mark.parametrize("contents", [None, "not a certificate"])
def test_verify_unusable_roots(run, tmp_path: Path, endorsement: Path, contents):
    roots = tmp_path / "roots.pem"
    if contents is not None:
        roots.write_text(contents)
    with pytest.raises(SystemExit) as info:
        run("verify", endorsement, "--root-certs", roots)
    assert info.value.code == 1
