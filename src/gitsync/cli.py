#!/usr/bin/env python3
"""gitsync CLI - pull and branch checkout for local working copies."""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"gitsync requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MERGE_REQUIRED = 3


def _apply_overrides(config, args):
    """Fold global CLI flags into a loaded config."""
    ssh_update = {}
    if args.no_agent:
        ssh_update["agent"] = False
    if args.key:
        ssh_update["keys"] = list(args.key)
    update = {}
    if ssh_update:
        update["ssh"] = config.ssh.model_copy(update=ssh_update)
    if args.remote:
        update["remote"] = config.remote.model_copy(update={"name": args.remote})
    if args.backend:
        update["backend"] = config.backend.model_copy(update={"name": args.backend})
    return config.model_copy(update=update) if update else config


def _fail(message: str, code: int = EXIT_ERROR, error: BaseException | None = None) -> None:
    from .observability import log_error

    if error is not None:
        log_error("gitsync command failed", error=type(error).__name__, detail=str(error), exit_code=code)
    print(f"gitsync: {message}", file=sys.stderr)
    sys.exit(code)


def _doctor(config, project_path: Path) -> int:
    from .backends import BackendError
    from .backends.registry import resolve_backend
    from .config_loader import get_config_paths
    from .credentials import has_credential_helper
    from .errors import AuthError
    from .ssh import SshCredentialProfile, describe_profile, inspect_key

    problems = 0
    try:
        profile = SshCredentialProfile.from_settings(config.ssh)
    except AuthError as e:
        print(f"[fail] {e.user_message()}")
        return EXIT_ERROR

    paths = get_config_paths(project_path)
    print(f"- user config: {paths['user_config']}")
    print(f"- project config: {paths['project_config'] or 'none'}")
    for line in describe_profile(profile):
        print(f"- {line}")

    try:
        profile.validate()
        print("[ok] ssh profile")
    except AuthError as e:
        problems += 1
        print(f"[fail] {e.user_message()}")

    for key in profile.existing_keys():
        try:
            inspect_key(key)
            print(f"[ok] {key}")
        except AuthError as e:
            # Encrypted keys still work through the agent
            problems += 0 if profile.ssh_agent else 1
            print(f"[warn] {e.user_message()}")

    try:
        git_config = resolve_backend(config.backend.name).credentials.read_global_config()
    except BackendError as e:
        problems += 1
        print(f"[fail] cannot read git config: {e}")
    else:
        if has_credential_helper(git_config):
            print("[ok] git credential helper configured")
        else:
            print("[warn] no git credential helper configured")

    tokens = [name for name in config.https.token_env_vars if os.environ.get(name)]
    if tokens:
        print(f"[ok] token available from {tokens[0]}")
    else:
        print(f"[warn] none of {', '.join(config.https.token_env_vars)} is set")

    return EXIT_OK if problems == 0 else EXIT_ERROR


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="gitsync",
        description="Fast-forward pulls and branch checkout over SSH or HTTPS",
    )
    ap.add_argument("--backend", help="Backend name (default: gitpython or $GITSYNC_BACKEND)")
    ap.add_argument("--remote", help="Remote to pull from (default: origin)")
    ap.add_argument("--no-agent", action="store_true", help="Do not ask the SSH agent for keys")
    ap.add_argument(
        "--key",
        action="append",
        metavar="PATH",
        help="SSH private key to try (repeatable, replaces the ~/.ssh defaults)",
    )

    sub = ap.add_subparsers(dest="cmd")

    p_pull = sub.add_parser("pull", help="Fetch and fast-forward the current branch")
    p_pull.add_argument("path", nargs="?", default=".", help="Repository path (default: .)")

    p_checkout = sub.add_parser("checkout", help="Switch branch (discards local changes)")
    p_checkout.add_argument("branch", help="Branch name")
    p_checkout.add_argument("path", nargs="?", default=".", help="Repository path (default: .)")

    sub.add_parser("doctor", help="Check SSH keys, agent and credential helpers")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    from .config_loader import ConfigError, get_config
    from .observability import configure_logging
    from .errors import GitSyncError, MergeRequiredError

    project_path = Path(getattr(args, "path", ".")).resolve()
    try:
        config = _apply_overrides(get_config(project_path), args)
    except ConfigError as e:
        _fail(str(e), error=e)
    configure_logging(
        level=config.logging.level,
        log_dir=config.logging.dir,
        disable_file=config.logging.disable_file,
    )

    if args.cmd == "doctor":
        sys.exit(_doctor(config, project_path))

    from .client import GitClient

    try:
        client = GitClient.from_config(config)
    except GitSyncError as e:
        _fail(e.user_message(), error=e)

    if args.cmd == "pull":
        try:
            result = client.pull(project_path)
        except MergeRequiredError as e:
            _fail(e.user_message(), EXIT_MERGE_REQUIRED, error=e)
        except GitSyncError as e:
            _fail(e.user_message(), error=e)
        if result.updated:
            print(f"{result.branch}: fast-forwarded {result.previous_target[:7]}..{result.new_target[:7]}")
        else:
            print(f"{result.branch}: already up to date")
        sys.exit(EXIT_OK)

    if args.cmd == "checkout":
        try:
            reference = client.checkout_branch(project_path, args.branch)
        except GitSyncError as e:
            _fail(e.user_message(), error=e)
        print(f"Switched to branch '{reference.shorthand}' at {reference.target[:7]}")
        sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
