"""
Provider adapters and the provider registry.

One adapter class per provider API family; the registry maps provider ids
to adapter factories. Nothing outside this package should import a
provider SDK directly.
"""
