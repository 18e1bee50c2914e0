# siliboot/iso.py — ensamblado de la ISO híbrida (BIOS + EFI) con Limine
#
# Pasos (todo o nada, en este orden):
#   stage   → copiar los archivos de Limine al árbol de staging
#   kernel  → copiar el ejecutable elegido como boot/silicium.elf
#   master  → xorriso -as mkisofs, layout híbrido El Torito + EFI
#   deploy  → limine-deploy instala el MBR para arranque legacy
#   verify  → comprobar la estructura de la imagen resultante
#   promote → renombrar la imagen temporal a bin/silicium.iso
#
# La imagen se escribe siempre en un temporal junto al destino: si algo
# falla, la ISO anterior queda intacta. No hay builds incrementales.

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .common import human, log, require_tool, run
from .config import Layout
from .errors import AssemblyFailure, CommandFailed
from .imagecheck import inspect_image
from .manifest import (BIOS_BOOT_IMAGE, BOOTLOADER_MANIFEST, EFI_BOOT_IMAGE,
                       KERNEL_DESTINATION)
from .selector import BuildArtifact


@dataclass
class BootableImage:
    output: Path
    staging_dir: Path | None = None
    sources: list = field(default_factory=list)  # [(origen, destino relativo)]
    patched: bool = False


def xorriso_command(xorriso: str, staging: Path, out: Path) -> list:
    return [xorriso, "-as", "mkisofs",
            "-b", str(BIOS_BOOT_IMAGE),
            "-no-emul-boot", "-boot-load-size", "4", "-boot-info-table",
            "--efi-boot", str(EFI_BOOT_IMAGE),
            "-efi-boot-part", "--efi-boot-image",
            "--protective-msdos-label",
            str(staging), "-o", str(out)]


def stage(root: Path, artifact: BuildArtifact, staging: Path,
          manifest=BOOTLOADER_MANIFEST) -> list:
    """Copia manifiesto + kernel a staging; devuelve los pares copiados."""
    log("=== PREPARANDO STAGING ===")
    copied = []
    for entry in manifest:
        src = root / entry.source
        dst = staging / entry.destination
        if not src.is_file():
            raise AssemblyFailure("stage", src, "archivo del bootloader ausente")
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        except OSError as e:
            raise AssemblyFailure("stage", src, str(e)) from e
        log(f"  ✓ {entry.source} → {entry.destination}")
        copied.append((src, entry.destination))

    dst = staging / KERNEL_DESTINATION
    if not artifact.path.is_file():
        raise AssemblyFailure("kernel", artifact.path, "el ejecutable desapareció")
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(artifact.path, dst)
    except OSError as e:
        raise AssemblyFailure("kernel", artifact.path, str(e)) from e
    log(f"  ✓ {artifact.path} → {KERNEL_DESTINATION} ({artifact.profile})")
    copied.append((artifact.path, KERNEL_DESTINATION))
    return copied


def _master(xorriso: str, staging: Path, tmp: Path):
    log("=== CREANDO ISO ===")
    try:
        run(xorriso_command(xorriso, staging, tmp))
    except CommandFailed as e:
        raise AssemblyFailure("master", staging, str(e)) from e
    if not tmp.is_file() or tmp.stat().st_size == 0:
        raise AssemblyFailure("master", tmp, "xorriso no generó la imagen")


def _deploy(limine_deploy: str, tmp: Path):
    log("=== INSTALANDO LIMINE (MBR) ===")
    try:
        run([limine_deploy, tmp])
    except CommandFailed as e:
        raise AssemblyFailure("deploy", tmp, str(e)) from e


def _verify(tmp: Path):
    log("=== VERIFICANDO IMAGEN ===")
    rep = inspect_image(tmp)
    for p in rep.problems:
        log(f"[WARN]  {p}")
    if not (rep.iso9660 and rep.bootable_legacy and rep.bootable_efi):
        raise AssemblyFailure("verify", tmp, "; ".join(rep.problems) or "imagen no arrancable")
    log(f"[OK]    ISO 9660 · El Torito BIOS+EFI · MBR Limine — {rep.volume_sectors} sectores")


def assemble(layout: Layout, artifact: BuildArtifact, manifest=BOOTLOADER_MANIFEST,
             keep_staging: bool = False) -> BootableImage:
    xorriso = require_tool("xorriso")
    limine_deploy = require_tool("limine-deploy")

    out = layout.image
    out.parent.mkdir(parents=True, exist_ok=True)
    layout.build.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix="staging-", dir=layout.build))
    tmp = out.with_name(f".{out.name}.{os.getpid()}.tmp")
    img = BootableImage(output=out, staging_dir=staging)

    try:
        if tmp.exists():
            tmp.unlink()
        img.sources = stage(layout.root, artifact, staging, manifest)
        _master(xorriso, staging, tmp)
        _deploy(limine_deploy, tmp)
        img.patched = True
        _verify(tmp)
        try:
            os.replace(tmp, out)
        except OSError as e:
            raise AssemblyFailure("promote", out, str(e)) from e
    finally:
        if tmp.exists():
            tmp.unlink()
        if not keep_staging:
            shutil.rmtree(staging, ignore_errors=True)
            img.staging_dir = None

    log(f"[OK]    {out} — {human(out)}")
    return img


def clean(layout: Layout):
    log("=== LIMPIANDO ===")
    for d in [layout.build, layout.logs]:
        if d.exists():
            shutil.rmtree(d)
    if layout.image.exists():
        layout.image.unlink()
    log("[OK]    Limpieza completa")
