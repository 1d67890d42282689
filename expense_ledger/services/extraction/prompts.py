"""
LLM Prompt for receipt extraction.

The prompt is fixed; only the OCR text changes between calls. It contains
literal JSON braces, so the text is substituted with str.replace rather
than str.format.
"""

OCR_TEXT_PLACEHOLDER = "{OCR_TEXT}"

OCR_TO_JSON_PROMPT = """Extract the expense details from this OCR text of a receipt or payment screenshot.

OCR TEXT:
{OCR_TEXT}

The text may be noisy, with broken lines and odd spacing. Look for:
1. AMOUNT - the total that was paid (e.g. "501,380", "68.33", "3.98")
2. CURRENCY - codes such as IDR, GBP, USD, EUR or symbols such as £, $, €, Rp
3. MERCHANT - the business that was paid, never the bank or payment app (Wise, Monzo, HSBC)
4. DATE - any date or time on the receipt

RESPOND WITH EXACTLY THIS JSON SHAPE:
{"amount": <number or null>, "currency": "<ISO code or null>", "date": "<YYYY-MM-DDTHH:MM:SS or null>", "merchant": "<business name>", "category": ["<main category>", "<subcategory>", "<location if visible>"], "ambiguous": <null or {"reason": "..."}>}

FIELD RULES:
- amount: plain number, no thousands separators, keep decimals. "501,380" -> 501380, "£68.33" -> 68.33
- currency: three-letter ISO 4217 code ("Rp" is IDR, "£" is GBP, "$" is USD), or null when nothing indicates it
- merchant: the shop or business name; for a transfer to a person, use the recipient's name
- date: ISO 8601, or null when no date is visible

CATEGORY TAGS - return 1 to 3 tags:
1. A main category, always one of:
   Food & Dining (Restaurant, Coffee, Groceries, Fast Food, Delivery)
   Transport (Taxi, Public Transit, Fuel, Parking, Flights)
   Shopping (Clothing, Electronics, Home, Personal Care)
   Entertainment (Streaming, Games, Movies, Events, Subscriptions)
   Bills & Utilities (Phone, Internet, Electricity, Water)
   Health (Pharmacy, Doctor, Gym, Wellness)
   Travel (Hotels, Activities, Souvenirs)
   Other
2. The subcategory, only if the merchant makes it clear
3. A place name, only if it appears in the merchant name

Examples:
- "Starbucks" -> ["Food & Dining", "Coffee"]
- "Netflix" -> ["Entertainment", "Streaming"]
- "Ely's Kitchen Bali" -> ["Food & Dining", "Restaurant", "Bali"]
- "Uber" -> ["Transport", "Taxi"]
- "Shell" -> ["Transport", "Fuel"]
- "Amazon" -> ["Shopping"]
- "Indomaret" -> ["Food & Dining", "Groceries"]
- "Kimia Farma" -> ["Health", "Pharmacy"]

SET "ambiguous" ONLY WHEN:
- no currency is visible: {"reason": "no currency visible"}
- several different amounts could each be the payment: {"reason": "multiple amounts"}
The same amount shown in two currencies is not ambiguous; use the first one.

Reply with the JSON object only."""


def build_extraction_prompt(ocr_text: str) -> str:
    """Insert OCR text into the extraction prompt."""
    return OCR_TO_JSON_PROMPT.replace(OCR_TEXT_PLACEHOLDER, ocr_text)
