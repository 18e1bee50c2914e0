# siliboot/cli.py — punto de entrada: build-iso · run · test · check · inspect · diagnose · clean
#
# Uso:
#   siliboot build-iso                 # seleccionar kernel + generar bin/silicium.iso
#   siliboot run --build               # build + QEMU interactivo
#   siliboot test all --timeout 60     # tests nativos + emulados (código de salida)
#   siliboot test emulated --uefi      # arrancar por EFI en vez de BIOS
#   siliboot check                     # herramientas disponibles
#   siliboot inspect                   # estructura de la ISO
#   siliboot diagnose bin/logs/debug.log

import argparse
import sys
from pathlib import Path

from .common import Colors, box, find_tool, human, log, set_log_file, tool_command
from .config import HarnessConfig, VmProfile
from .diagnose import diagnose_file
from .errors import EnvironmentFailure, PipelineError
from .imagecheck import hexdump, inspect_image
from .iso import assemble, clean
from .orchestrator import EXIT_FATAL, Verdict, run_emulated, run_native
from .qemu import find_ovmf, qemu_command_for, run_interactive
from .selector import select_artifact


def _banner():
    print()
    print("╔══════════════════════════════════════════════════════╗")
    print("║         SILICIUM BUILD & TEST HARNESS               ║")
    print("║  Kernel → ISO híbrida (Limine) → QEMU → veredicto   ║")
    print("╚══════════════════════════════════════════════════════╝")
    print()


def _config(args, **overrides) -> HarnessConfig:
    cfg = HarnessConfig.from_root(args.root, **overrides)
    set_log_file(cfg.layout.build_log)
    return cfg


def _vm(args, headless: bool = True) -> VmProfile:
    return VmProfile(memory_mb=args.memory, cores=args.smp,
                     firmware="uefi" if args.uefi else "bios",
                     headless=headless, trace=args.trace)

# ══════════════════════════════════════════════════════════════════════════════
# COMANDOS
# ══════════════════════════════════════════════════════════════════════════════

def cmd_build_iso(args) -> int:
    cfg = _config(args, keep_staging=args.keep_staging)
    art = select_artifact(cfg.layout, cfg.profiles, cfg.strategy)
    img = assemble(cfg.layout, art, keep_staging=cfg.keep_staging)
    rows = [f"✓ ISO      {img.output}",
            f"  kernel   {art.profile}  ({art.path})",
            f"  tamaño   {human(img.output)}"]
    if img.staging_dir is not None:
        rows.append(f"  staging  {img.staging_dir}")
    box("SILICIUM — IMAGEN DE ARRANQUE", rows)
    return 0


def cmd_run(args) -> int:
    cfg = _config(args)
    if args.build:
        art = select_artifact(cfg.layout, cfg.profiles, cfg.strategy)
        assemble(cfg.layout, art)
    if not cfg.layout.image.exists():
        log(f"[ERROR] {cfg.layout.image} no existe (usar --build)")
        return EXIT_FATAL
    vm = _vm(args, headless=args.headless)
    cmd = qemu_command_for(cfg.layout.image, vm,
                           debug_log=cfg.layout.debug_log if vm.trace else None)
    log(f"=== EJECUTANDO QEMU ({vm.firmware}) ===")
    return run_interactive(cmd)


def _report(result):
    color = Colors.GREEN if result.verdict is Verdict.PASS else Colors.RED
    print(f"{Colors.BOLD}{color}[{result.mode}] {result.verdict.value.upper()}{Colors.RESET}"
          + (f"  {result.detail}" if result.detail else ""))
    if result.diagnosis is not None:
        for line in result.diagnosis.summary():
            print("  " + line)


def cmd_test(args) -> int:
    cfg = _config(args, vm=_vm(args), timeout=args.timeout, echo=not args.quiet)
    codes = []

    if args.mode in ("native", "all"):
        try:
            res = run_native(cfg)
        except EnvironmentFailure as e:
            if args.mode == "native" or e.tool != "host":
                raise
            log(f"[WARN]  tests nativos omitidos: {e.detail}")
        else:
            _report(res)
            codes.append(res.exit_code)

    if args.mode in ("emulated", "all"):
        res = run_emulated(cfg)
        _report(res)
        codes.append(res.exit_code)

    return max(codes) if codes else 0


def cmd_check(args) -> int:
    log("=== VERIFICANDO HERRAMIENTAS ===")
    missing = 0
    for key in ("xorriso", "limine-deploy", "qemu", "cargo"):
        name = tool_command(key)
        p = find_tool(name)
        if not p:
            missing += 1
            log(f"[MISSING] {name}")
        else:
            log(f"[OK]    {name} → {p}")
    try:
        log(f"[OK]    OVMF → {find_ovmf()}")
    except EnvironmentFailure:
        log("[--]    OVMF (opcional, solo para --uefi)")
    return EXIT_FATAL if missing else 0


def cmd_inspect(args) -> int:
    path = Path(args.image) if args.image else _config(args).layout.image
    if not path.exists():
        log(f"[ERROR] {path} no existe")
        return EXIT_FATAL
    rep = inspect_image(path)
    print("=" * 70)
    print(f"IMAGEN: {path}  ({human(path)})")
    print("=" * 70)
    with open(path, "rb") as f:
        for line in hexdump(f.read(512), 0, 64):
            print(line)
    print()
    print(f"  MBR firma 0x55AA   {'✓' if rep.mbr_signature else '✗'}")
    print(f"  MBR código Limine  {'✓' if rep.mbr_boot_code else '✗'}")
    print(f"  Particiones MBR    {', '.join(f'0x{t:02x}' for t in rep.partitions) or '—'}"
          + ("  (+GPT)" if rep.gpt else ""))
    print(f"  ISO 9660           {'✓' if rep.iso9660 else '✗'}  {rep.volume_sectors} sectores")
    print(f"  El Torito          {'✓' if rep.el_torito else '✗'}  catálogo LBA {rep.catalog_lba}")
    print(f"  Arranque BIOS      {'✓' if rep.bootable_legacy else '✗'}")
    print(f"  Arranque EFI       {'✓' if rep.bootable_efi else '✗'}")
    for p in rep.problems:
        print(f"  {Colors.YELLOW}⚠ {p}{Colors.RESET}")
    print()
    return 0 if rep.bootable_legacy and rep.bootable_efi else 1


def cmd_diagnose(args) -> int:
    path = Path(args.log)
    if not path.exists():
        print(f"{Colors.RED}Error: '{path}' no existe{Colors.RESET}")
        return EXIT_FATAL
    diag = diagnose_file(path)
    print(f"\n{Colors.BOLD}{Colors.CYAN}ANÁLISIS DE {path}{Colors.RESET}\n")
    for line in diag.summary():
        print("  " + line)
    print()
    return 1 if diag.has_problems else 0


def cmd_clean(args) -> int:
    cfg = _config(args)
    set_log_file(None)
    clean(cfg.layout)
    return 0

# ══════════════════════════════════════════════════════════════════════════════
# MAIN
# ══════════════════════════════════════════════════════════════════════════════

def _add_vm_args(p):
    p.add_argument("--uefi", action="store_true", help="Arrancar por firmware EFI (OVMF)")
    p.add_argument("--trace", action="store_true",
                   help="Trace de QEMU (-d int,cpu_reset) en bin/logs/debug.log")
    p.add_argument("--memory", type=int, default=VmProfile.memory_mb, help="Memoria en MiB")
    p.add_argument("--smp", type=int, default=VmProfile.cores, help="Núcleos de CPU")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="siliboot",
        description="Build de la ISO de Silicium y tests en QEMU.")
    parser.add_argument("--root", default=None,
                        help="Raíz del repositorio (por defecto: $SILIBOOT_ROOT o cwd)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("build-iso", help="Generar bin/silicium.iso")
    p.add_argument("--keep-staging", action="store_true", help="No borrar el árbol de staging")
    p.set_defaults(handler=cmd_build_iso)

    p = sub.add_parser("run", help="Arrancar la ISO en QEMU (interactivo)")
    p.add_argument("--build", action="store_true", help="Generar la ISO antes de arrancar")
    p.add_argument("--headless", action="store_true", help="Sin ventana (-display none)")
    _add_vm_args(p)
    p.set_defaults(handler=cmd_run)

    p = sub.add_parser("test", help="Ejecutar tests (nativos, emulados o ambos)")
    p.add_argument("mode", nargs="?", choices=["native", "emulated", "all"], default="all")
    p.add_argument("--timeout", type=float, default=60.0, help="Plazo de la sesión QEMU (s)")
    p.add_argument("--quiet", action="store_true", help="No reenviar la consola a stdout")
    _add_vm_args(p)
    p.set_defaults(handler=cmd_test)

    p = sub.add_parser("check", help="Verificar herramientas externas")
    p.set_defaults(handler=cmd_check)

    p = sub.add_parser("inspect", help="Analizar la estructura de una ISO")
    p.add_argument("image", nargs="?", default=None)
    p.set_defaults(handler=cmd_inspect)

    p = sub.add_parser("diagnose", help="Analizar un trace de QEMU")
    p.add_argument("log")
    p.set_defaults(handler=cmd_diagnose)

    p = sub.add_parser("clean", help="Borrar bin/build, bin/logs y la ISO")
    p.set_defaults(handler=cmd_clean)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _banner()
    try:
        return args.handler(args)
    except PipelineError as e:
        log(f"[ERROR] {type(e).__name__}: {e}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        log("[ERROR] interrumpido")
        return 130


if __name__ == "__main__":
    sys.exit(main())
