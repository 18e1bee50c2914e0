"""
Tests del driver de QEMU.

Las sesiones usan un 'emulador' Python (fixture emulator) que escribe en
stdout como lo haría la consola serie con -serial stdio, y se queda vivo
después de "detenerse" igual que QEMU con -no-shutdown.
"""

import threading
import time
import types

import pytest

from siliboot.config import Markers, VmProfile
from siliboot.errors import EnvironmentFailure, SessionTimeout
from siliboot.qemu import QemuSession, build_qemu_command, find_ovmf

HALTS_THEN_WOULD_REBOOT = """
    import time
    print("[*] Booting Silicium...")
    print("[!] System halted")
    time.sleep(2)
    print("[*] Booting Silicium...")
    time.sleep(60)
"""

PANICS = """
    import time
    print("[*] Booting Silicium...")
    print("[!] CPU 0 panicked at src/arch/idt.rs:42:5")
    print("[!] System halted")
    time.sleep(60)
"""

NEVER_HALTS = """
    import time
    print("[*] Booting Silicium...")
    while True:
        time.sleep(0.1)
"""


def _arg(cmd, flag):
    return cmd[cmd.index(flag) + 1]


def test_command_pins_hardware_profile(tmp_path):
    cmd = build_qemu_command(tmp_path / "silicium.iso", VmProfile())
    assert cmd[0] == "qemu-system-x86_64"
    assert _arg(cmd, "-m") == "128"
    assert _arg(cmd, "-smp") == "4"
    assert _arg(cmd, "-serial") == "stdio"
    assert "-no-reboot" in cmd and "-no-shutdown" in cmd
    drive = _arg(cmd, "-drive")
    assert "media=cdrom" in drive and "readonly=on" in drive
    assert drive.endswith(f"file={tmp_path / 'silicium.iso'}")
    assert _arg(cmd, "-display") == "none"
    assert "-bios" not in cmd
    assert "-d" not in cmd
    assert cmd.count("-drive") == 1


def test_command_escapes_commas_in_image_path():
    cmd = build_qemu_command("/tmp/a,b/silicium.iso", VmProfile())
    assert _arg(cmd, "-drive").endswith("file=/tmp/a,,b/silicium.iso")


def test_command_uefi_and_trace(tmp_path):
    vm = VmProfile(firmware="uefi", trace=True, headless=False)
    cmd = build_qemu_command("x.iso", vm, ovmf="/fw/OVMF.fd", debug_log=tmp_path / "debug.log")
    assert _arg(cmd, "-bios") == "/fw/OVMF.fd"
    assert _arg(cmd, "-d") == "int,cpu_reset,guest_errors"
    assert _arg(cmd, "-D") == str(tmp_path / "debug.log")
    assert "-display" not in cmd


def test_trace_needs_debug_log():
    with pytest.raises(ValueError):
        build_qemu_command("x.iso", VmProfile(trace=True))


def test_unknown_firmware_rejected():
    with pytest.raises(ValueError):
        VmProfile(firmware="coreboot")


def test_ovmf_override(monkeypatch, tmp_path):
    fw = tmp_path / "OVMF.fd"
    fw.write_bytes(b"\x00")
    monkeypatch.setenv("SILIBOOT_OVMF", str(fw))
    assert find_ovmf() == str(fw)
    monkeypatch.setenv("SILIBOOT_OVMF", str(tmp_path / "missing.fd"))
    with pytest.raises(EnvironmentFailure):
        find_ovmf()


def test_halted_session_stays_alive_without_reboot_output(emulator, tmp_path):
    serial = tmp_path / "serial.log"
    session = QemuSession(emulator(HALTS_THEN_WOULD_REBOOT), serial_log=serial)
    with session:
        outcome = session.wait(timeout=20, stop_when=Markers().is_terminal)
        assert outcome.reason == "halted"
        assert session.running
    assert not session.running
    # nada del "segundo arranque": la sesión se cerró antes
    assert session.console.lines == ("[*] Booting Silicium...", "[!] System halted")
    assert serial.read_text() == "[*] Booting Silicium...\n[!] System halted\n"


def test_session_stops_at_first_terminal_line(emulator):
    with QemuSession(emulator(PANICS)) as session:
        outcome = session.wait(timeout=20, stop_when=Markers().is_terminal)
    # "panicked at" ya es marcador de fallo
    assert outcome.reason == "halted"
    assert outcome.lines == ("[*] Booting Silicium...",
                             "[!] CPU 0 panicked at src/arch/idt.rs:42:5")


def test_exited_session_reports_returncode(emulator):
    with QemuSession(emulator('print("bye"); raise SystemExit(3)')) as session:
        outcome = session.wait(timeout=20)
    assert outcome.reason == "exited"
    assert outcome.returncode == 3
    assert session.console.lines == ("bye",)


def test_timeout_forces_teardown(emulator):
    session = QemuSession(emulator(NEVER_HALTS), grace=2.0)
    with session:
        with pytest.raises(SessionTimeout) as exc:
            session.wait(timeout=1.0, stop_when=Markers().is_terminal)
        assert not session.running
    assert exc.value.timeout == 1.0
    assert exc.value.lines == ("[*] Booting Silicium...",)
    assert session.console.closed


def test_cancel_from_other_thread(emulator):
    with QemuSession(emulator(NEVER_HALTS)) as session:
        threading.Timer(0.3, session.cancel).start()
        outcome = session.wait(timeout=20)
        assert outcome.reason == "cancelled"
    assert not session.running


def test_teardown_on_exception(emulator):
    session = QemuSession(emulator(NEVER_HALTS))
    with pytest.raises(KeyError):
        with session:
            raise KeyError("boom")
    assert not session.running
    assert session.console.closed


def test_missing_emulator_binary(tmp_path):
    session = QemuSession([str(tmp_path / "qemu-system-x86_64")])
    with pytest.raises(EnvironmentFailure):
        session.start()
    assert session.console.closed


CLOSES_CONSOLE_AND_HANGS = """
    import os, time
    print("[*] Booting Silicium...")
    os.close(1)
    os.close(2)
    time.sleep(60)
"""


def test_closed_console_does_not_outlive_deadline(emulator):
    # stdout cerrado con el proceso vivo: el plazo sigue mandando
    session = QemuSession(emulator(CLOSES_CONSOLE_AND_HANGS), grace=2.0)
    started = time.monotonic()
    with session:
        with pytest.raises(SessionTimeout) as exc:
            session.wait(timeout=1.0)
        assert not session.running
    assert time.monotonic() - started < 15
    assert exc.value.lines == ("[*] Booting Silicium...",)


def test_lines_after_close_are_dropped(tmp_path):
    session = QemuSession(["qemu-system-x86_64"], serial_log=tmp_path / "serial.log")
    session.console.close()
    session.proc = types.SimpleNamespace(stdout=iter(["[*] tarde\n"]))
    session._pump()
    assert session.console.lines == ()
    assert session._eof


def test_boot_banner_is_not_a_halt():
    m = Markers()
    assert not m.is_terminal("[*] Silicium booted successfully!")
    assert m.is_terminal("\x1b[1m\x1b[31m[!]\x1b[0m System halted")
