"""
Post-processing macro launcher.

A map layer can name a macro that post-processes its exported table (for
example converting it to a formatted spreadsheet). The macro is any
executable script; it is run from its own folder with the output folder,
the exported table and the target spreadsheet name as arguments.
"""

import subprocess
import sys
from pathlib import Path
from typing import List

from utils.logger import get_logger

logger = get_logger(__name__)

# Interpreters for script types that are not directly executable
SCRIPT_RUNNERS = {
    '.py': [sys.executable],
    '.vbs': ['cscript.exe', '//B', '//Nologo'],
    '.ps1': ['powershell', '-ExecutionPolicy', 'Bypass', '-File'],
}


def build_macro_command(macro_name: str, output_folder: Path, table_name: str, table_format: str) -> List[str]:
    """Build the argument list used to launch a macro."""
    macro_path = Path(macro_name)
    runner = SCRIPT_RUNNERS.get(macro_path.suffix.lower(), [])
    return runner + [
        str(macro_path),
        str(output_folder),
        f"{table_name}.{table_format.lower()}",
        f"{table_name}.xlsx",
    ]


def run_macro(macro_name: str, output_folder: Path, table_name: str, table_format: str,
              timeout: float = 600) -> bool:
    """
    Run a post-processing macro and wait for it to finish.

    Returns:
        True if the macro exited with code 0, False otherwise
    """
    macro_name = str(Path(macro_name).resolve())
    command = build_macro_command(macro_name, output_folder, table_name, table_format)
    logger.debug(f"Running macro: {command}")

    try:
        result = subprocess.run(
            command,
            cwd=str(Path(macro_name).parent),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"Error executing macro {macro_name}: {e}")
        return False

    if result.returncode != 0:
        logger.error(f"Error executing macro. Exit code : {result.returncode}")
        if result.stderr:
            logger.debug(result.stderr.strip())
        return False

    return True
