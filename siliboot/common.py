# siliboot/common.py — utilidades compartidas: log, ejecución de comandos, herramientas
#
# Todo lo que imprime el harness pasa por log(): una línea con hora,
# a stdout y al build.log a la vez.

import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

from .errors import CommandFailed, EnvironmentFailure

# ══════════════════════════════════════════════════════════════════════════════
# LOG
# ══════════════════════════════════════════════════════════════════════════════
_LOG_FILE: Path | None = None


class Colors:
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    MAGENTA = '\033[95m'
    CYAN = '\033[96m'
    BOLD = '\033[1m'
    RESET = '\033[0m'


def set_log_file(path: Path | None):
    """Redirige el build.log (None = solo stdout)."""
    global _LOG_FILE
    _LOG_FILE = Path(path) if path is not None else None


def log(msg: str):
    ts   = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    line = f"[{ts}] {msg}"
    print(line, flush=True)
    if _LOG_FILE is None:
        return
    _LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    with open(_LOG_FILE, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def box(title: str, rows: list[str], width: int = 70):
    print()
    print("╔" + "═" * width + "╗")
    print("║" + title.center(width) + "║")
    if rows:
        print("╠" + "═" * width + "╣")
    for r in rows:
        print("║  " + r.ljust(width - 2)[:width - 2] + "║")
    print("╚" + "═" * width + "╝")
    print()

# ══════════════════════════════════════════════════════════════════════════════
# COMANDOS EXTERNOS
# ══════════════════════════════════════════════════════════════════════════════

def run(cmd: list, **kwargs) -> subprocess.CompletedProcess:
    """Ejecuta cmd; código != 0 → CommandFailed, binario ausente → EnvironmentFailure."""
    cmd = [str(c) for c in cmd]
    log(f"  > {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, **kwargs)
    except FileNotFoundError as e:
        raise EnvironmentFailure(cmd[0], "no se encontró el ejecutable") from e
    if result.returncode != 0:
        log(f"[ERROR] Falló con código {result.returncode}")
        raise CommandFailed(cmd, result.returncode)
    return result


def find_tool(*names) -> str | None:
    for n in names:
        p = shutil.which(n)
        if p:
            return p
    return None


# Herramientas que el pipeline invoca, con su variable de entorno de override
TOOLS = {
    "qemu":          ("SILIBOOT_QEMU",          "qemu-system-x86_64"),
    "xorriso":       ("SILIBOOT_XORRISO",       "xorriso"),
    "limine-deploy": ("SILIBOOT_LIMINE_DEPLOY", "limine-deploy"),
    "cargo":         ("SILIBOOT_CARGO",         "cargo"),
}


def tool_command(key: str) -> str:
    """Nombre/ruta a invocar para una herramienta (el override gana)."""
    env, default = TOOLS[key]
    return os.environ.get(env) or default


def require_tool(key: str) -> str:
    """Como tool_command() pero exige que exista: si no, EnvironmentFailure."""
    name = tool_command(key)
    p = find_tool(name)
    if not p:
        raise EnvironmentFailure(name, f"no está en PATH (override: ${TOOLS[key][0]})")
    return p


def human(p: Path) -> str:
    b = p.stat().st_size
    return f"{b/(1024*1024):.1f} MB" if b >= 1024*1024 else f"{b//1024} KB"
