# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Quasar training infrastructure package.

Subsystems:
  - checkpoint: atomic save/load of model weights and optimizer records
"""
