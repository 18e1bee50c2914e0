# siliboot/orchestrator.py — tests nativos y tests emulados del kernel
#
#   run_native()   → cargo test en el host; el código de salida manda
#   run_emulated() → seleccionar → ensamblar ISO → QEMU → leer marcadores
#
# Sin marcador de veredicto el resultado es "infrastructure-error", no
# "fail": el problema puede estar en el pipeline y no en el kernel.

import platform
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum

from .common import log, require_tool
from .config import HarnessConfig, Markers
from .diagnose import Diagnosis, diagnose_file
from .errors import EnvironmentFailure, SessionTimeout
from .iso import assemble
from .qemu import QemuSession, qemu_command_for
from .selector import BuildArtifact, select_artifact

NATIVE_CRATE  = "silicium-x86_64"
NATIVE_TARGET = "x86_64-unknown-linux-gnu"
NATIVE_HOSTS  = ("x86_64", "amd64")


class Verdict(str, Enum):
    PASS        = "pass"
    FAIL        = "fail"
    INFRA_ERROR = "infrastructure-error"


EXIT_CODES = {
    Verdict.PASS:        0,
    Verdict.FAIL:        1,
    Verdict.INFRA_ERROR: 2,
}
EXIT_FATAL = 3   # MissingArtifact / AssemblyFailure / EnvironmentFailure


@dataclass(frozen=True)
class TestRunResult:
    __test__ = False

    mode: str                     # native | emulated
    verdict: Verdict
    lines: tuple = ()
    returncode: int | None = None
    timed_out: bool = False
    detail: str = ""
    artifact: BuildArtifact | None = None
    diagnosis: Diagnosis | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.verdict]


def classify(lines, markers: Markers) -> tuple:
    """(Verdict | None, línea): el primer marcador de veredicto gana."""
    for line in lines:
        v = markers.verdict(line)
        if v == "pass":
            return Verdict.PASS, line
        if v == "fail":
            return Verdict.FAIL, line
    return None, ""


def native_test_command(cargo: str) -> list:
    return [cargo, "+nightly", "test", "-p", NATIVE_CRATE,
            f"--target={NATIVE_TARGET}", "-Z", "build-std"]


def _stream(cmd: list, cwd=None, echo: bool = True) -> tuple:
    log(f"  > {' '.join(cmd)}")
    captured = []
    try:
        with subprocess.Popen(
            cmd, cwd=cwd,
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            text=True, errors="replace", bufsize=1
        ) as p:
            assert p.stdout
            for line in p.stdout:
                if echo:
                    sys.stdout.write(line)
                    sys.stdout.flush()
                captured.append(line.rstrip("\r\n"))
            p.wait()
            return p.returncode, tuple(captured)
    except FileNotFoundError as e:
        raise EnvironmentFailure(cmd[0], "no se encontró el ejecutable") from e


def run_native(config: HarnessConfig, command: list | None = None) -> TestRunResult:
    log("=== TESTS NATIVOS ===")
    host = platform.machine().lower()
    if host not in NATIVE_HOSTS:
        raise EnvironmentFailure(
            "host", f"arquitectura {host!r}: solo los tests emulados tienen sentido aquí")
    cmd = command if command is not None else native_test_command(require_tool("cargo"))
    rc, lines = _stream([str(c) for c in cmd], cwd=config.layout.root, echo=config.echo)
    if rc == 0:
        log("[OK]    tests nativos: pass")
        return TestRunResult("native", Verdict.PASS, lines, returncode=rc)
    log(f"[ERROR] tests nativos: fail (código {rc})")
    return TestRunResult("native", Verdict.FAIL, lines, returncode=rc,
                         detail=f"el runner terminó con código {rc}")


def run_emulated(config: HarnessConfig, command_for=None) -> TestRunResult:
    """Pipeline completo; los errores fatales (PipelineError) se propagan.

    command_for(image_path) permite sustituir la línea de comandos de QEMU.
    """
    log("=== TESTS EMULADOS ===")
    layout = config.layout
    artifact = select_artifact(layout, config.profiles, config.strategy)
    image = assemble(layout, artifact, keep_staging=config.keep_staging)

    log("=== EJECUTANDO QEMU ===")
    if command_for is not None:
        cmd = command_for(image.output)
    else:
        cmd = qemu_command_for(image.output, config.vm,
                               debug_log=layout.debug_log if config.vm.trace else None)

    session = QemuSession(cmd, serial_log=layout.serial_log, echo=config.echo)
    outcome, timed_out = None, False
    try:
        with session:
            outcome = session.wait(config.timeout, stop_when=config.markers.is_terminal)
    except SessionTimeout:
        timed_out = True
    reason = outcome.reason if outcome is not None else None
    rc = outcome.returncode if outcome is not None else None
    # tras una parada solo cuenta la salida hasta la línea de parada
    lines = outcome.lines if reason == "halted" else session.console.lines

    if timed_out:
        verdict, detail = Verdict.FAIL, f"timeout: sin detenerse en {config.timeout:g}s"
    else:
        verdict, marker = classify(lines, config.markers)
        if verdict is None:
            verdict = Verdict.INFRA_ERROR
            detail = f"sin marcador de veredicto (sesión: {reason}, código {rc})"
        else:
            detail = marker

    diagnosis = None
    if config.vm.trace and verdict is not Verdict.PASS and layout.debug_log.exists():
        diagnosis = diagnose_file(layout.debug_log)

    tag = "[OK]   " if verdict is Verdict.PASS else "[ERROR]"
    log(f"{tag} tests emulados: {verdict.value} — {detail}")
    return TestRunResult("emulated", verdict, lines, returncode=rc,
                         timed_out=timed_out, detail=detail,
                         artifact=artifact, diagnosis=diagnosis)
