"""Schema v1 - Initial listings and catalog schema.

Tables:
- listing_versions: one row per materialized snapshot, at most one active
- listings_current: snapshot rows, owned by their version
- tokens, trait_types, trait_values, token_traits: static collection catalog
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'listing_versions',
            'columns': [
                {'name': 'id', 'type': 'SERIAL8', 'primary_key': True},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'total', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'}
            ],
            'indexes': [
                {'name': 'idx_listing_versions_active', 'columns': ['active'], 'unique': True, 'where': 'active'}
            ]
        },
        {
            'name': 'listings_current',
            'columns': [
                {'name': 'version_id', 'type': 'INT8', 'nullable': False},
                {'name': 'token_mint_addr', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_num', 'type': 'INT8'},
                {'name': 'price', 'type': 'INT8', 'nullable': False},
                {'name': 'seller', 'type': 'TEXT', 'nullable': False},
                {'name': 'image_url', 'type': 'TEXT', 'nullable': False},
                {'name': 'listing_source', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['version_id', 'token_mint_addr'],
            'foreign_keys': [
                {'columns': ['version_id'], 'references': 'listing_versions(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_listings_current_price', 'columns': ['version_id', 'price', 'token_mint_addr']}
            ]
        },
        {
            'name': 'tokens',
            'columns': [
                {'name': 'id', 'type': 'SERIAL8', 'primary_key': True},
                {'name': 'token_mint_addr', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'token_num', 'type': 'INT8'},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'image_url', 'type': 'TEXT', 'nullable': False}
            ],
            'indexes': [
                {'name': 'idx_tokens_token_num', 'columns': ['token_num', 'token_mint_addr']}
            ]
        },
        {
            'name': 'trait_types',
            'columns': [
                {'name': 'id', 'type': 'SERIAL8', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'spatial_group', 'type': 'TEXT'},
                {'name': 'purpose_class', 'type': 'TEXT'}
            ]
        },
        {
            'name': 'trait_values',
            'columns': [
                {'name': 'id', 'type': 'SERIAL8', 'primary_key': True},
                {'name': 'value', 'type': 'TEXT', 'nullable': False, 'unique': True}
            ]
        },
        {
            'name': 'token_traits',
            'columns': [
                {'name': 'token_id', 'type': 'INT8', 'nullable': False},
                {'name': 'type_id', 'type': 'INT8', 'nullable': False},
                {'name': 'value_id', 'type': 'INT8', 'nullable': False}
            ],
            'primary_key': ['token_id', 'type_id'],
            'foreign_keys': [
                {'columns': ['token_id'], 'references': 'tokens(id)', 'on_delete': 'CASCADE'},
                {'columns': ['type_id'], 'references': 'trait_types(id)'},
                {'columns': ['value_id'], 'references': 'trait_values(id)'}
            ],
            'indexes': [
                {'name': 'idx_token_traits_value', 'columns': ['value_id', 'token_id']},
                {'name': 'idx_token_traits_type_value', 'columns': ['type_id', 'value_id']}
            ]
        }
    ],
    'migrations': []
}
