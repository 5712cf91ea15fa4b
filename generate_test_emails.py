import os
import time
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.application import MIMEApplication

# Configuration
OUTPUT_DIR = "testcase"
os.makedirs(OUTPUT_DIR, exist_ok=True)

def create_email(filename, sender, recipient, subject, body_text, html_body=None,
                 attachment_data=None, spam_flag=False):
    """
    Helper to build a valid .eml file with headers and optional attachments.
    """
    msg = MIMEMultipart()
    msg['From'] = sender
    msg['To'] = recipient
    msg['Subject'] = subject
    msg['Date'] = time.strftime("%a, %d %b %Y %H:%M:%S +0000")

    # What a filtering MTA would stamp on the message
    if spam_flag:
        msg['X-Spam-Flag'] = 'YES'
        msg['X-Spam-Status'] = 'Yes, score=9.1'

    msg.attach(MIMEText(body_text, 'plain'))
    if html_body:
        msg.attach(MIMEText(html_body, 'html'))

    if attachment_data:
        fname, fcontent = attachment_data
        part = MIMEApplication(fcontent, Name=fname)
        part['Content-Disposition'] = f'attachment; filename="{fname}"'
        msg.attach(part)

    filepath = os.path.join(OUTPUT_DIR, filename)
    with open(filepath, 'wb') as f:
        f.write(msg.as_bytes())
    print(f"✅ Generated: {filepath}")

# --- 1. The "Clean" Email ---
create_email(
    filename="clean_meeting.eml",
    sender="Team Lead <lead@example-company.com>",
    recipient="you@example-company.com",
    subject="Meeting agenda for Q1",
    body_text="Hi team,\n\nPlease review the agenda for tomorrow's meeting. We will go over the "
              "roadmap, the hiring plan and the offsite logistics.\n\nThanks,\nLead"
)

# --- 2. The "Short Body + Bad Link" Email ---
create_email(
    filename="short_link.eml",
    sender="noreply@notice-center.top",
    recipient="victim@example-company.com",
    subject="Document shared",
    body_text="View it here: http://192.168.13.37/view",
)

# --- 3. The "Double Extension" Email ---
create_email(
    filename="invoice_attachment.eml",
    sender="billing@unknown-vendor.com",
    recipient="finance@example-company.com",
    subject="Invoice INV-2024-001",
    body_text="Please find the attached invoice for last month's services. Let us know if "
              "anything looks wrong with the totals.",
    attachment_data=("invoice.pdf.exe", b"MZ not really an executable")
)

# --- 4. The "Brand Impersonation" Email ---
create_email(
    filename="paypal_impersonation.eml",
    sender="PayPal Service <service@paypa1-security.info>",
    recipient="victim@example-company.com",
    subject="Your PayPal account has been limited",
    body_text="Dear customer,\n\nWe noticed unusual sign-in activity on your paypal account. "
              "Please verify your account within 24 hours or it will be suspended.\n\nPayPal",
    html_body='<p>Dear customer,</p><p><a href="http://paypal.account-verify.xyz/login">Verify now</a></p>'
)

# --- 5. The "Spam Folder" Email ---
create_email(
    filename="spam_lottery.eml",
    sender="winner@promo-giveaway.club",
    recipient="you@example-company.com",
    subject="Congratulations, you've won!",
    body_text="Claim your lottery prize today. Send a gift card code to confirm your identity.",
    spam_flag=True
)

print(f"\n🎉 Done! 5 test emails created in the '{OUTPUT_DIR}' folder.")
print("👉 Run batch_test.py against the running API to see the verdicts.")
