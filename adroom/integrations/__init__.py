"""Clients for Supabase and the Facebook Graph API."""
