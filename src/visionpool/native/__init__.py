"""
Native vision-library state and the bounded pool that leases it out.
"""
