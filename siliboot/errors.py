# siliboot/errors.py — taxonomía de errores del pipeline
#
# Ningún componente reintenta: todo error sube hasta el orquestador / CLI,
# que lo traduce a un código de salida.


class PipelineError(Exception):
    """Error fatal del pipeline (no es un veredicto de test)."""


class MissingArtifact(PipelineError):
    def __init__(self, probed):
        self.probed = [str(p) for p in probed]
        super().__init__(
            "no se encontró ningún ejecutable del kernel (probado: "
            + ", ".join(self.probed) + ")")


class AssemblyFailure(PipelineError):
    def __init__(self, step: str, path=None, detail: str = ""):
        self.step = step
        self.path = str(path) if path is not None else None
        self.detail = detail
        msg = f"paso '{step}' falló"
        if self.path:
            msg += f" ({self.path})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class EnvironmentFailure(PipelineError):
    def __init__(self, tool: str, detail: str = ""):
        self.tool = tool
        self.detail = detail
        super().__init__(f"{tool}: {detail}" if detail else tool)


class CommandFailed(PipelineError):
    def __init__(self, cmd, returncode: int):
        self.cmd = [str(c) for c in cmd]
        self.returncode = returncode
        super().__init__(f"'{' '.join(self.cmd)}' terminó con código {returncode}")


class SessionTimeout(PipelineError):
    """La sesión superó su plazo; se lanza después de destruir la VM."""

    def __init__(self, timeout: float, lines=()):
        self.timeout = timeout
        self.lines = tuple(lines)
        super().__init__(f"la sesión QEMU superó {timeout:g}s sin detenerse")
