"""spk - GitOps deployment pipeline tooling for Kubernetes on Azure

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Configuration passed explicitly, never held in globals
- Fail fast with a stable error key

spk introspects deployments across the source -> ACR -> HLD -> manifest
pipeline chain, records stage results in Azure Table Storage, and generates
Terraform deployments from hierarchical definition.yaml files.
"""

__version__ = "0.6.0"
__all__ = ["__version__"]
