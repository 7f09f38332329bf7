"""r-auth Meta information.
   r-auth keeps TOTP seeds encrypted at rest and produces authentication codes.
"""
__title__ = 'r_auth'
__description__ = (
   'Local TOTP credential vault with keyring-backed '
   'encryption at rest.'
)
__version__ = '1.1.0'
__copyright__ = 'Copyright (c) 2024 ervan'
__author__ = 'ervan'
__author_email__ = 'ervanroot@gmail.com'
__license__ = 'MIT'
__url__ = 'https://github.com/Ervan0707/r-auth'
