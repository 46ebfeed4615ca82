"""RunaVault Meta information.
   RunaVault stores encrypted site credentials and shares them
   with users and groups.
"""
__title__ = 'runavault'
__description__ = (
   'RunaVault stores encrypted site credentials and distributes them '
   'to users and groups.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 RunaVault contributors'
__author__ = 'RunaVault contributors'
__license__ = 'Apache-2.0'
