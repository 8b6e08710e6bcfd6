"""
Upstream clients and image operations

- imaging: Pillow resize / composite / colour matching
- stability: background removal + SD3 generation
- piapi: task based generation with polling
- openrouter: optional prompt expansion
"""
