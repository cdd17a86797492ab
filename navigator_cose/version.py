"""Navigator COSE Meta information.
   Navigator COSE is a multi-tenant secret and configuration store
   with COSE envelope encryption.
"""
__title__ = 'navigator_cose'
__description__ = (
   'Navigator COSE is a multi-tenant secret and configuration store '
   'with COSE envelope encryption.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-cose'
