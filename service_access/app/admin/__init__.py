"""
Administrative mutation package.

Rollout, module matrix and add-on grant changes, each guarded, versioned
and audited.
"""
