"""web/ -- Server-rendered HTML pages for UserAdmin.

Layer rule: web/ may import from auth/ and core/, never from api/.
"""
