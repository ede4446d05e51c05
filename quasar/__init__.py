# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Quasar: Adam and RMSProp as per-parameter transform pipelines.

Subpackages:
  - optim: optimizer algorithms, whole-model adaptor, checkpoint records
  - config: frozen pydantic config schemas and the YAML loader
  - training: checkpoint save/load
  - logging: structured JSON logger
  - runtime: seeding and logger setup from the global config
"""
