"""Backstage GitOps deployment tooling.

Configuration, pure helpers shared by the CDK stacks, and the
``backstage-gitops`` command line. Import modules directly where needed:
    from backstage_gitops.config import Settings, get_settings
"""

__all__ = []
