"""
diagnose.py - Análisis del trace de QEMU (-d int,cpu_reset,guest_errors)
Detecta excepciones de CPU, triple faults y reinicios del guest
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from .common import Colors

EXCEPTION_NAMES = {
    0x00: "Divide by Zero (#DE)",
    0x01: "Debug Exception (#DB)",
    0x02: "Non-Maskable Interrupt",
    0x03: "Breakpoint (#BP)",
    0x04: "Overflow (#OF)",
    0x05: "Bound Range Exceeded (#BR)",
    0x06: "Invalid Opcode (#UD)",
    0x07: "Device Not Available (#NM)",
    0x08: "Double Fault (#DF)",
    0x09: "Coprocessor Segment Overrun",
    0x0A: "Invalid TSS (#TS)",
    0x0B: "Segment Not Present (#NP)",
    0x0C: "Stack-Segment Fault (#SS)",
    0x0D: "General Protection Fault (#GP)",
    0x0E: "Page Fault (#PF)",
    0x10: "x87 FPU Error (#MF)",
    0x11: "Alignment Check (#AC)",
    0x12: "Machine Check (#MC)",
    0x13: "SIMD Floating-Point (#XM)",
    0x14: "Virtualization Exception (#VE)",
    0x15: "Control Protection (#CP)",
}

CHECK_RE = re.compile(r'check_exception old: (0x[0-9a-f]+) new (0x[0-9a-f]+)')
# "     0: v=0e e=0002 i=0 cpl=0 IP=0008:ffffffff80001234 pc=... SP=0010:ffff8000... CR2=..."
CTX_RE   = re.compile(r'v=([0-9a-f]+) e=([0-9a-f]+).*?IP=[0-9a-f]+:([0-9a-f]+)'
                      r'.*?SP=[0-9a-f]+:([0-9a-f]+)(?:.*?CR2=([0-9a-f]+))?')


def exception_name(vector: int) -> str:
    return EXCEPTION_NAMES.get(vector, f"Unknown (0x{vector:02x})")


@dataclass(frozen=True)
class CpuException:
    old: int | None
    vector: int
    error_code: int | None = None
    ip: str | None = None
    sp: str | None = None
    cr2: str | None = None
    line_num: int = 0


@dataclass
class Diagnosis:
    exceptions: list = field(default_factory=list)
    triple_faults: int = 0
    cpu_resets: int = 0
    gp_loop: bool = False
    cascade: list = field(default_factory=list)

    @property
    def triple_fault(self) -> bool:
        return self.triple_faults > 0

    @property
    def has_problems(self) -> bool:
        return bool(self.triple_faults or self.gp_loop or self.cascade)

    def summary(self, color: bool = True) -> list[str]:
        c = Colors if color else _NoColors
        out = []
        if not self.exceptions and not self.triple_faults:
            out.append(f"{c.GREEN}✓ No se detectaron excepciones{c.RESET}")
            return out

        out.append(f"{c.RED}Total de excepciones: {len(self.exceptions)}{c.RESET}")
        counts = defaultdict(int)
        for e in self.exceptions:
            counts[e.vector] += 1
        for vec, n in sorted(counts.items(), key=lambda x: -x[1]):
            col = c.RED if n > 3 else c.YELLOW
            out.append(f"  {col}• {exception_name(vec)}: {n} veces{c.RESET}")

        if self.triple_fault:
            out.append(f"{c.RED}{c.BOLD}✗ TRIPLE FAULT DETECTADO{c.RESET} "
                       f"({self.triple_faults}x, {self.cpu_resets} CPU reset)")
        if self.gp_loop:
            out.append(f"{c.RED}{c.BOLD}✗ LOOP DE GENERAL PROTECTION FAULT{c.RESET}")
        if self.cascade:
            chain = " → ".join(exception_name(v) for v in self.cascade)
            out.append(f"{c.YELLOW}⚠ CASCADA DE EXCEPCIONES{c.RESET}  {chain}")
        last = self.exceptions[-1] if self.exceptions else None
        if last is not None and last.ip:
            out.append(f"Última excepción: {exception_name(last.vector)} "
                       f"IP=0x{last.ip} SP=0x{last.sp}"
                       + (f" CR2=0x{last.cr2}" if last.vector == 0x0E and last.cr2 else ""))
        return out


class _NoColors:
    RED = GREEN = YELLOW = BOLD = RESET = ''


def parse_trace(lines) -> Diagnosis:
    lines = list(lines)
    diag = Diagnosis()

    for i, line in enumerate(lines):
        if 'Triple fault' in line:
            diag.triple_faults += 1
            continue
        if line.startswith('CPU Reset'):
            diag.cpu_resets += 1
            continue
        m = CHECK_RE.search(line)
        if not m:
            continue
        old = int(m.group(1), 16)
        exc = CpuException(old=None if old == 0xffffffff else old,
                           vector=int(m.group(2), 16), line_num=i)
        # la línea siguiente trae el contexto (vector, error, IP, SP)
        if i + 1 < len(lines):
            ctx = CTX_RE.search(lines[i + 1])
            if ctx and int(ctx.group(1), 16) == exc.vector:
                exc = CpuException(old=exc.old, vector=exc.vector,
                                   error_code=int(ctx.group(2), 16),
                                   ip=ctx.group(3), sp=ctx.group(4),
                                   cr2=ctx.group(5), line_num=i)
        diag.exceptions.append(exc)

    if len(diag.exceptions) > 3:
        diag.cascade = [e.vector for e in diag.exceptions[-5:]]
    if sum(1 for e in diag.exceptions if e.vector == 0x0D) >= 5:
        diag.gp_loop = True
    return diag


def diagnose_file(path) -> Diagnosis:
    with open(Path(path), 'r', encoding='utf-8', errors='ignore') as f:
        return parse_trace(line.rstrip('\n') for line in f)
