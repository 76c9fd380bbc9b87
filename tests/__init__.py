"""Test package for the dual n-back trainer.

Core modules are tested with injected fake clocks and scripted stimulus
generators. UI tests run headlessly using pygame's dummy video driver to
avoid opening real windows. Run ``pytest`` from the project root.
"""
