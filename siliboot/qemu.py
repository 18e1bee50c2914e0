# siliboot/qemu.py — ejecución de la ISO en QEMU con hardware fijo
#
# Política de la sesión:
#   -no-reboot / -no-shutdown : si el kernel intenta reiniciar o apagar,
#                               QEMU se queda detenido y vivo, no reinicia
#   -serial stdio             : la consola serie del kernel llega por el
#                               stdout del proceso y se captura aquí
#
# QEMU no tiene timeout propio: el plazo lo impone wait(). Cualquier salida
# (marcador, cancelación, plazo vencido, excepción) termina en close().

import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from .common import log, require_tool
from .config import VmProfile
from .console import ConsoleStream
from .errors import EnvironmentFailure, SessionTimeout

OVMF_CANDIDATES = [
    "/usr/share/ovmf/OVMF.fd",
    "/usr/share/OVMF/OVMF.fd",
    "/usr/share/qemu/OVMF.fd",
    "/usr/share/edk2/x64/OVMF.4m.fd",
    "/usr/share/edk2/ovmf/OVMF.fd",
    "/usr/share/edk2-ovmf/x64/OVMF.fd",
    # macOS
    "/opt/homebrew/share/qemu/edk2-x86_64-code.fd",
    "/usr/local/share/qemu/edk2-x86_64-code.fd",
]


def find_ovmf() -> str:
    override = os.environ.get("SILIBOOT_OVMF")
    if override:
        if not os.path.isfile(override):
            raise EnvironmentFailure(override, "firmware OVMF no encontrado ($SILIBOOT_OVMF)")
        return override
    for path in OVMF_CANDIDATES:
        if os.path.isfile(path):
            return path
    raise EnvironmentFailure("OVMF", "no se encontró firmware UEFI para QEMU")


def _drive_path(p) -> str:
    # las comas separan opciones de -drive; dentro de file= se duplican
    return str(p).replace(",", ",,")


def build_qemu_command(image, vm: VmProfile, qemu: str = "qemu-system-x86_64",
                       debug_log=None, ovmf: str | None = None) -> list:
    cmd = [qemu,
           "-m", str(vm.memory_mb),
           "-smp", str(vm.cores),
           "-drive", f"format=raw,media=cdrom,readonly=on,file={_drive_path(image)}",
           "-no-reboot",
           "-no-shutdown",
           "-serial", "stdio"]
    if vm.headless:
        cmd += ["-display", "none"]
    if vm.firmware == "uefi":
        cmd += ["-bios", ovmf or find_ovmf()]
    if vm.trace:
        if debug_log is None:
            raise ValueError("trace=True necesita debug_log")
        cmd += ["-d", "int,cpu_reset,guest_errors", "-D", str(debug_log)]
    return cmd


def qemu_command_for(image, vm: VmProfile, debug_log=None) -> list:
    """build_qemu_command() con el binario resuelto (o EnvironmentFailure)."""
    return build_qemu_command(image, vm, require_tool("qemu"), debug_log=debug_log)


@dataclass(frozen=True)
class SessionOutcome:
    reason: str              # exited | halted | cancelled
    returncode: int | None
    lines: tuple
    elapsed: float


class QemuSession:
    def __init__(self, command: list, serial_log=None, echo: bool = False,
                 grace: float = 5.0):
        self.command = [str(c) for c in command]
        self.serial_log = Path(serial_log) if serial_log is not None else None
        self.echo = echo
        self.grace = grace
        self.console = ConsoleStream()
        self.proc = None
        self._reader = None
        self._serial = None
        self._wake = threading.Condition()
        # serializa el lector con close(): serial y consola se cierran juntos
        self._io = threading.Lock()
        self._eof = False
        self._cancelled = False
        self._started_at = None

    # ── ciclo de vida ────────────────────────────────────────────────────────

    def start(self):
        if self.proc is not None:
            raise RuntimeError("la sesión ya fue iniciada")
        log(f"  > {' '.join(self.command)}")
        if self.serial_log is not None:
            self.serial_log.parent.mkdir(parents=True, exist_ok=True)
            self._serial = open(self.serial_log, "w", encoding="utf-8")
        try:
            self.proc = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True, errors="replace", bufsize=1)
        except OSError as e:
            self._close_serial()
            self.console.close()
            raise EnvironmentFailure(self.command[0], f"no se pudo iniciar el emulador: {e}") from e
        self._started_at = time.monotonic()
        self._reader = threading.Thread(target=self._pump, name="qemu-console", daemon=True)
        self._reader.start()
        return self

    def _pump(self):
        try:
            for raw in self.proc.stdout:
                line = raw.rstrip("\r\n")
                with self._io:
                    # lo que llegue después de close() se descarta
                    if self.console.closed:
                        break
                    if self._serial is not None:
                        self._serial.write(line + "\n")
                        self._serial.flush()
                    if self.echo:
                        print(line, flush=True)
                    self.console.append(line)
                with self._wake:
                    self._wake.notify_all()
        finally:
            with self._wake:
                self._eof = True
                self._wake.notify_all()

    def cancel(self):
        with self._wake:
            self._cancelled = True
            self._wake.notify_all()

    def wait(self, timeout: float | None = None, stop_when=None) -> SessionOutcome:
        """Bloquea hasta salida del emulador, línea de parada, cancelación o plazo.

        Plazo vencido → la sesión se destruye y se lanza SessionTimeout.
        """
        if self.proc is None:
            raise RuntimeError("la sesión no fue iniciada")
        deadline = time.monotonic() + timeout if timeout is not None else None
        seen = 0
        exited = False
        with self._wake:
            while True:
                lines = self.console.snapshot()
                if stop_when is not None:
                    for idx in range(seen, len(lines)):
                        if stop_when(lines[idx]):
                            return self._outcome("halted", lines[:idx + 1])
                seen = len(lines)
                if self._cancelled:
                    return self._outcome("cancelled", lines)
                if self._eof:
                    exited = True
                    break
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._wake.wait(min(remaining, 0.5))
                else:
                    self._wake.wait(0.5)

        if exited:
            # stdout cerrado no implica proceso terminado: el plazo sigue valiendo
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
            try:
                self.proc.wait(timeout=remaining)
                return self._outcome("exited", self.console.snapshot())
            except subprocess.TimeoutExpired:
                pass

        log(f"[ERROR] QEMU sin detenerse después de {timeout:g}s — forzando cierre")
        self.close()
        raise SessionTimeout(timeout, self.console.lines)

    def _outcome(self, reason: str, lines) -> SessionOutcome:
        return SessionOutcome(reason, self.proc.poll(), tuple(lines),
                              time.monotonic() - self._started_at)

    def close(self):
        if self.proc is not None:
            if self.proc.poll() is None:
                self.proc.terminate()
                try:
                    self.proc.wait(timeout=self.grace)
                except subprocess.TimeoutExpired:
                    self.proc.kill()
                    self.proc.wait()
            if self._reader is not None:
                self._reader.join(timeout=self.grace)
        with self._io:
            self._close_serial()
            self.console.close()
        if self.proc is not None and self.proc.stdout is not None:
            self.proc.stdout.close()

    def _close_serial(self):
        if self._serial is not None:
            self._serial.close()
            self._serial = None

    @property
    def running(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.close()
        return False


def run_interactive(command: list) -> int:
    """Arranca QEMU con stdio heredado (desarrollo, sin captura)."""
    command = [str(c) for c in command]
    log(f"  > {' '.join(command)}")
    try:
        return subprocess.run(command).returncode
    except FileNotFoundError as e:
        raise EnvironmentFailure(command[0], "no se encontró el emulador") from e
