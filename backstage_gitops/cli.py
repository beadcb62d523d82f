"""Command line for planning and image publishing.

Usage:
    backstage-gitops plan [--stack NAME]
    backstage-gitops push-image [--tag TAG]
"""

import argparse
import logging
import subprocess
import sys
import tempfile
from typing import List, Optional

from botocore.exceptions import ClientError

from backstage_gitops.config import Settings, get_settings
from backstage_gitops.graph import ResourceGraph, stack_apply_order

logger = logging.getLogger(__name__)


def plan(settings: Settings, stack: Optional[str] = None) -> dict:
    """Synthesize the app and compute the apply order of every stack.

    Args:
        settings: Deployment settings.
        stack: Only plan this stack when given.

    Returns:
        Mapping of stack name to its resource batches, in stack deploy order.

    Raises:
        KeyError: If ``stack`` is not part of the app.
    """
    import aws_cdk as cdk

    from infrastructure.assembly import build_app

    with tempfile.TemporaryDirectory() as outdir:
        app = build_app(settings, cdk.App(outdir=outdir))
        assembly = app.synth()

        order = stack_apply_order(assembly)
        if stack is not None:
            if stack not in order:
                raise KeyError(f"Unknown stack '{stack}'; available: {order}")
            order = [stack]

        result = {}
        for stack_name in order:
            template = assembly.get_stack_by_name(stack_name).template
            graph = ResourceGraph.from_template(template)
            result[stack_name] = graph.levels()
            logger.info(f"{stack_name}: {len(graph)} resources in {len(result[stack_name])} batches")
        return result


def _print_plan(result: dict) -> None:
    for position, (stack_name, batches) in enumerate(result.items(), start=1):
        print(f"{position}. {stack_name}")
        for level, batch in enumerate(batches, start=1):
            print(f"   [{level}] {', '.join(batch)}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backstage-gitops",
        description="Plan the GitOps platform and Backstage stacks and publish the Backstage image.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Show the stack and resource apply order")
    plan_parser.add_argument("--stack", help="Only plan this stack")

    push_parser = subparsers.add_parser("push-image", help="Build and push the Backstage image")
    push_parser.add_argument("--tag", help="Image tag (defaults to IMAGE_TAG)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entrypoint of the ``backstage-gitops`` command."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    args = _build_parser().parse_args(argv)

    try:
        settings = get_settings()
        if args.command == "plan":
            _print_plan(plan(settings, stack=args.stack))
        elif args.command == "push-image":
            from backstage_gitops.registry import push_image

            pushed = push_image(settings, tag=args.tag)
            print(pushed.repo_digest or pushed.image_name)
    except (ValueError, KeyError) as e:
        # pydantic.ValidationError is a ValueError
        logger.error(f"{args.command} failed: {e}")
        return 1
    except ClientError as e:
        logger.error(f"AWS API error during {args.command}: {e}")
        return 1
    except subprocess.CalledProcessError as e:
        logger.error(f"Command failed with exit code {e.returncode}: {' '.join(e.cmd[:3])}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
