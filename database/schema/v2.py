"""Schema v2 - Add synchronization staging and lease tables.

listing_staging holds the rows of one synchronization attempt, keyed by
attempt_id, and is emptied when the attempt ends. sync_leases lets
several worker instances share one database without racing on
activation.
"""

from .v1 import schema as _v1

schema = {
    'version': 2,
    'tables': _v1['tables'] + [
        {
            'name': 'listing_staging',
            'columns': [
                {'name': 'attempt_id', 'type': 'UUID', 'nullable': False},
                {'name': 'token_mint_addr', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_num', 'type': 'INT8'},
                {'name': 'price', 'type': 'INT8', 'nullable': False},
                {'name': 'seller', 'type': 'TEXT', 'nullable': False},
                {'name': 'image_url', 'type': 'TEXT', 'nullable': False},
                {'name': 'listing_source', 'type': 'TEXT', 'nullable': False},
                {'name': 'staged_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['attempt_id', 'token_mint_addr']
        },
        {
            'name': 'sync_leases',
            'columns': [
                {'name': 'name', 'type': 'TEXT', 'primary_key': True},
                {'name': 'holder', 'type': 'UUID', 'nullable': False},
                {'name': 'acquired_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False}
            ]
        }
    ],
    'migrations': [
        '''
        CREATE TABLE IF NOT EXISTS listing_staging (
            attempt_id UUID NOT NULL,
            token_mint_addr TEXT NOT NULL,
            token_num INT8,
            price INT8 NOT NULL,
            seller TEXT NOT NULL,
            image_url TEXT NOT NULL,
            listing_source TEXT NOT NULL,
            staged_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (attempt_id, token_mint_addr)
        );
        ''',
        '''
        CREATE TABLE IF NOT EXISTS sync_leases (
            name TEXT PRIMARY KEY,
            holder UUID NOT NULL,
            acquired_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL
        );
        '''
    ]
}
