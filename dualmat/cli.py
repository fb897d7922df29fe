import json as _json
import os
import time
from pathlib import Path

import click
import numpy as np
from rich.console import Console

from . import config as _cfg
from .errors import RuntimeUnavailableError
from .runtime import available_runtimes, get_runtime, is_cupy_available, is_pycuda_available

console = Console()


def _load_env():
    # Load environment variables from a .env file if present
    if not _cfg.get("DUALMAT_LOAD_DOTENV"):
        return
    root = Path(__file__).resolve().parents[1]
    candidates = [
        Path.cwd() / ".env",
        root / ".env",
    ]
    for p in candidates:
        try:
            if p.exists():
                for line in p.read_text().splitlines():
                    s = line.strip()
                    if not s or s.startswith("#"):
                        continue
                    if "=" in s:
                        k, v = s.split("=", 1)
                        k = k.strip()
                        v = v.strip().strip('"').strip("'")
                        if k and v and k not in os.environ:
                            os.environ[k] = v
        except OSError:
            continue


def _runtime_summary() -> str:
    lines = [
        f"Configured runtime: {_cfg.get('DUALMAT_RUNTIME')}",
        f"CuPy available: {is_cupy_available()}",
        f"PyCUDA available: {is_pycuda_available()}",
        f"Usable runtimes: {', '.join(available_runtimes())}",
    ]
    return "\n".join(lines)


@click.group()
@click.option(
    "--strict-layout",
    is_flag=True,
    help="Raise instead of warning when a pull disagrees with the device layout tag.",
)
def main(strict_layout: bool):
    """dualmat CLI: host/device matrix transport."""
    _load_env()
    if strict_layout:
        _cfg.set("DUALMAT_STRICT_LAYOUT", True)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
@click.option("--runtime", "runtime_name", default=None, help="Runtime to describe (default: configured).")
def info(as_json: bool, runtime_name):
    """Display accelerator runtime availability and device details."""
    try:
        rt = get_runtime(runtime_name)
        details = rt.get_device_info()
    except RuntimeUnavailableError as e:
        details = {"name": runtime_name, "available": False, "error": str(e)}
    if as_json:
        click.echo(_json.dumps({
            "cupy": is_cupy_available(),
            "pycuda": is_pycuda_available(),
            "runtimes": available_runtimes(),
            "selected": details,
        }, indent=2))
        return
    console.print("[bold cyan]dualmat Runtime Report[/bold cyan]")
    console.print(_runtime_summary())
    for k, v in details.items():
        console.print(f"  {k}: {v}")


@main.group()
def config():
    """Inspect dualmat environment configuration."""
    pass


@config.command("list")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def config_list(as_json: bool):
    rows = _cfg.describe()
    if as_json:
        click.echo(_json.dumps(rows, indent=2, default=str))
        return
    for r in rows:
        choices = f" ({'|'.join(r['choices'])})" if r["choices"] else ""
        console.print(f"[bold]{r['name']}[/bold]={r['current']}{choices}  [dim]{r['description']}[/dim]")


@main.command()
@click.option("--rows", default=4, show_default=True, help="Rows of A and C.")
@click.option("--inner", default=3, show_default=True, help="Cols of A / rows of B.")
@click.option("--cols", default=5, show_default=True, help="Cols of B and C.")
@click.option("--runtime", "runtime_name", default=None, help="Runtime to use (default: configured).")
@click.option("--seed", default=0, show_default=True, help="RNG seed for the inputs.")
@click.option("--show", is_flag=True, help="Print the operand and result grids.")
def demo(rows: int, inner: int, cols: int, runtime_name, seed: int, show: bool):
    """
    Multiply two random matrices on the device via the column-major path and check against NumPy.
    """
    from .kernels import gemm
    from .matrix import Matrix

    try:
        rt = get_runtime(runtime_name)
    except RuntimeUnavailableError as e:
        raise click.ClickException(str(e))
    console.print(f"[bold cyan]dualmat demo[/bold cyan] on runtime [bold]{rt.name}[/bold]")

    rng = np.random.default_rng(seed)
    a_np = rng.integers(0, 10, size=(rows, inner)).astype(np.float64)
    b_np = rng.integers(0, 10, size=(inner, cols)).astype(np.float64)

    with Matrix.from_array(a_np, runtime=rt) as a, Matrix.from_array(b_np, runtime=rt) as b, \
            Matrix(rows, cols, runtime=rt) as c, Matrix.from_array(a_np @ b_np, runtime=rt) as expected:
        t0 = time.perf_counter()
        a.push_to_device_transposed()
        b.push_to_device_transposed()
        gemm(a, b, c)
        c.pull_from_device_transposed()
        elapsed = time.perf_counter() - t0
        if show:
            console.print("A =")
            console.print(a.format_grid(), end="")
            console.print("B =")
            console.print(b.format_grid(), end="")
            console.print("C = A @ B")
            console.print(c.format_grid(), end="")
        ok = c.is_approximately_equal(expected)
    console.print(f"{rows}x{inner} @ {inner}x{cols} in [bold]{elapsed:.6f} s[/bold]")
    if ok:
        console.print("[green]Result matches NumPy ✅[/green]")
    else:
        console.print("[red]Result differs from NumPy[/red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
