"""spk modules - Self-contained bricks for Terraform definitions and docs

- Infra Common: File names, template cache location
- Definition: Parent/leaf definition loading, variable merge, tfvars rendering
- Template Source: Cached clones of template repositories
- Infra Generator: Generated Terraform folders from definitions
- Scaffold: definition.yaml from a template's variables.tf
- Command Docs: Command manifest and release diffs
"""
