"""eVault Meta information.
   eVault stores opaque recovery metadata and encrypted entries per user.
"""
__title__ = 'evault'
__description__ = (
   'eVault stores opaque recovery metadata and encrypted '
   'entries on behalf of client-side encryption.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/evault'
