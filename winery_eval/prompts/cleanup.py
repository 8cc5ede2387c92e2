def get_cleanup_prompt(markdown: str) -> str:
    return f"""You are tasked with cleaning up and formatting a wine tasting conversation. This is a VERY important task and you MUST maintain the COMPLETE conversation without any truncation or summarization. Follow these rules exactly:

1. Fix any spelling and grammar errors while maintaining the natural flow
2. Find the staff member's name in the conversation (usually introduced as "my name is [Name]" or similar) and replace "Staff:" with "[Name]:"
3. Maintain every single interaction and detail - do not skip or summarize anything
4. Use single line breaks between speakers
5. Use at most double line breaks between major sections
6. Format as clean markdown with these specific rules:
   - Convert any text between single stars that describes actions (like *picks up glass*) to italics using markdown _picks up glass_
   - Keep text between double stars (like **Date:**) bold
   - Remove ### from headers but make the text bold (e.g., "### Staff:" becomes "**Staff:**")
   - All action descriptions and non-dialog text should be italicized
7. Do not add any commentary or additional text
8. Do not truncate or shorten the conversation in any way
9. Ensure the entire conversation is preserved from start to finish

Here's the conversation to clean up:

{markdown}

Return the complete cleaned conversation exactly as is, just with fixed spelling/grammar and proper markdown formatting."""
