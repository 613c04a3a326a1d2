"""Describes the recipe book domain. Centres around attaching media.

Why is this hard?

- An uploaded file has to end up on disk and in the entity record, and the
  two must never disagree. There is no transaction spanning a database row
  and a directory.
- Clients lie about file types. Only the bytes can be trusted.
- Requests for the same recipe can arrive at the same time.
- Only the owner of a recipe or user may change it.

Recipes and users themselves are just validated fields in a table.
"""
