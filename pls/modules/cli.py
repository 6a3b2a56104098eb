#!/usr/bin/env python3
# pls/modules/cli.py
"""
pls CLI - one sub-command per engine operation

- every sub-command delegates to the module that owns the operation
- results go to stdout through rich; progress notices come from the log
- exit status: 0 on success, 1 on failure; a batch that installed at least
  one package exits 0 with a warning listing what failed
"""

from __future__ import annotations

import sys
import argparse
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pls import __version__
from pls.modules import config as config_mod
from pls.modules import logging as logging_mod
from pls.modules.buildsystem import BuildCapture
from pls.modules.db import PackageStore
from pls.modules.errors import BuildFailure, PartialFailure, PlsError
from pls.modules.fetcher import Fetcher
from pls.modules.pkgtool import PkgTool
from pls.modules.remove import Remover
from pls.modules.repo_sync import update_repository
from pls.modules.upgrade import BatchResult, Upgrader

logger = logging_mod.get_logger("cli")

console = Console()
err_console = Console(stderr=True)


# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {escape(msg)}")


def print_warn(msg: str):
    err_console.print(f"[bold yellow]![/] {escape(msg)}")


def print_err(msg: str):
    err_console.print(f"[bold red]✖[/] {escape(msg)}")


def print_info(msg: str):
    console.print(f"[cyan]{escape(msg)}[/cyan]")


# -----------------------
# CLI Implementation
# -----------------------
class PlsCLI:
    def __init__(self, cfg: Optional[config_mod.Config] = None):
        self.config = cfg or config_mod.get_config()
        self.fetcher = Fetcher()
        self.store = PackageStore(self.config.db_dir())
        self.pkgtool = PkgTool(cfg=self.config, store=self.store)
        self.remover = Remover(cfg=self.config, store=self.store)
        self.upgrader = Upgrader(cfg=self.config, store=self.store, pkgtool=self.pkgtool, fetcher=self.fetcher)
        self.builder = BuildCapture(cfg=self.config)

    def install_package(self, identifier: str):
        manifest = self.pkgtool.install(identifier)
        print_ok(f"{manifest.name} v{manifest.version} installed")

    def remove_package(self, name: str):
        self.remover.remove(name)
        print_ok(f"{name} has been removed")

    def show_info(self, identifier: str):
        manifest = self.pkgtool.info(identifier)
        console.print(f"name: {escape(manifest.name)}")
        console.print(f"version: {escape(manifest.version)}")
        if manifest.dependencies:
            console.print(f"depends: {escape(', '.join(manifest.dependencies))}")

    def list_packages(self):
        rows = list(self.store.list_installed())
        if not rows:
            print_info("nothing installed yet")
            return
        table = Table(title="Installed packages")
        table.add_column("name", style="bold")
        table.add_column("version")
        table.add_column("depends")
        for m in rows:
            table.add_row(escape(m.name), escape(m.version), escape(", ".join(m.dependencies)))
        console.print(table)
        print_info(f"{len(rows)} package(s) installed")

    def _report_batch(self, result: BatchResult, what: str):
        if result.succeeded:
            print_ok(f"{len(result.succeeded)} package(s) {what}: {', '.join(result.succeeded)}")

    def update(self):
        result = self.upgrader.update()
        if not result.succeeded:
            print_ok("everything's up to date!")
            return
        self._report_batch(result, "updated")

    def bundle(self, name: str):
        result = self.upgrader.bundle(name)
        self._report_batch(result, f"installed from bundle '{name}'")

    def add(self, path: str, draft: bool = False, output: Optional[str] = None):
        out = self.builder.add(path, draft=draft, output_dir=output)
        print_ok(f"package is ready: {out}")
        print_info(f"share it: {out}")

    def repo_update(self, repo_dir: str):
        index = update_repository(repo_dir)
        if index is None:
            print_warn("no packages found in packages/")
            return
        print_ok(f"index.json updated with {len(index.packages)} package(s)")


# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="pls", description="pls - a tiny package manager")
    ap.add_argument("--version", action="version", version=f"pls {__version__}")
    ap.add_argument("--config", help="path to a config file (YAML or JSON)")
    ap.add_argument("--root", help="install root (default: /)")
    sub = ap.add_subparsers(dest="cmd")

    p_install = sub.add_parser("install", help="install a package by name, path, .deb or URL")
    p_install.add_argument("package")

    p_remove = sub.add_parser("remove", aliases=["rm"], help="remove an installed package")
    p_remove.add_argument("package")

    p_info = sub.add_parser("info", help="show the manifest of a local .pls archive")
    p_info.add_argument("package")

    sub.add_parser("list", aliases=["ls"], help="list installed packages")
    sub.add_parser("update", help="reinstall packages whose repo version differs")

    p_add = sub.add_parser("add", help="build a project and package it as .pls")
    p_add.add_argument("path", nargs="?", default=".")
    p_add.add_argument("--draft", action="store_true", help="debug build")
    p_add.add_argument("--output", "-o", help="output directory (default: packages dir)")

    p_repo = sub.add_parser("repo", help="repository maintenance")
    repo_sub = p_repo.add_subparsers(dest="repo_cmd")
    p_repo_update = repo_sub.add_parser("update", help="regenerate index.json from packages/*.pls")
    p_repo_update.add_argument("dir", nargs="?", default=".")

    p_bundle = sub.add_parser("bundle", help="install every package of a repo bundle")
    p_bundle.add_argument("name")

    return ap


def _setup_config(args) -> config_mod.Config:
    overrides = {"paths": {"root": args.root}} if args.root else None
    cfg = config_mod.load(args.config, overrides=overrides)
    logging_mod.reload_config()
    return cfg


def dispatch(cli: PlsCLI, args, parser) -> int:
    if args.cmd == "install":
        cli.install_package(args.package)
    elif args.cmd in ("remove", "rm"):
        cli.remove_package(args.package)
    elif args.cmd == "info":
        cli.show_info(args.package)
    elif args.cmd in ("list", "ls"):
        cli.list_packages()
    elif args.cmd == "update":
        cli.update()
    elif args.cmd == "add":
        cli.add(args.path, draft=args.draft, output=args.output)
    elif args.cmd == "repo" and args.repo_cmd == "update":
        cli.repo_update(args.dir)
    elif args.cmd == "bundle":
        cli.bundle(args.name)
    else:
        parser.print_help()
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)

    try:
        cfg = _setup_config(args)
    except ValueError as e:
        print_err(f"bad config: {e}")
        return 1

    try:
        return dispatch(PlsCLI(cfg), args, parser)
    except PartialFailure as e:
        for name in e.failed:
            print_err(f"failed {name}: {e.result.errors.get(name)}")
        if e.succeeded:
            print_warn(f"{len(e.succeeded)} succeeded, {len(e.failed)} failed: {', '.join(e.failed)}")
            return 0
        print_err(f"all {len(e.failed)} package(s) failed")
        return 1
    except BuildFailure as e:
        print_err(str(e))
        if e.stderr:
            err_console.print(e.stderr, markup=False, highlight=False)
        return 1
    except PlsError as e:
        print_err(str(e))
        logger.debug("command %s failed", args.cmd, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
