"""In-memory doubles for Supabase, the Graph API and the text model."""
