"""GraphQL documents for the WooGraphQL commerce schema."""

CART_FIELDS = """
fragment CartFields on Cart {
  contents {
    nodes {
      key
      product { node { id databaseId name } }
      variation { node { id databaseId name } }
      quantity
      total
      subtotal
      subtotalTax
    }
  }
  subtotal
  subtotalTax
  shippingTax
  shippingTotal
  total
  totalTax
  feeTax
  feeTotal
  discountTax
  discountTotal
}
"""

GET_CART = """
query GetCart {
  cart { ...CartFields }
}
""" + CART_FIELDS

ADD_TO_CART = """
mutation AddToCart($input: AddToCartInput!) {
  addToCart(input: $input) {
    cartItem { key quantity }
    cart { ...CartFields }
  }
}
""" + CART_FIELDS

UPDATE_ITEM_QUANTITIES = """
mutation UpdateItemQuantities($input: UpdateItemQuantitiesInput!) {
  updateItemQuantities(input: $input) {
    removed { key }
    updated { key }
    cart { ...CartFields }
  }
}
""" + CART_FIELDS

ADDRESS_FIELDS = """
  firstName
  lastName
  address1
  address2
  city
  state
  postcode
  country
"""

GET_CURRENT_USER = """
query GetCurrentUser {
  customer {
    id
    firstName
    lastName
    email
    username
    billing {""" + ADDRESS_FIELDS + """ email phone }
    shipping {""" + ADDRESS_FIELDS + """ }
  }
}
"""

LOGIN_WITH_COOKIES = """
mutation Login($username: String!, $password: String!) {
  loginWithCookies(input: { login: $username, password: $password }) {
    status
  }
}
"""

REGISTER_CUSTOMER = """
mutation RegisterCustomer(
  $username: String!
  $email: String!
  $password: String!
  $firstName: String
  $lastName: String
) {
  registerCustomer(
    input: {
      username: $username
      email: $email
      password: $password
      firstName: $firstName
      lastName: $lastName
    }
  ) {
    customer {
      id
      email
      firstName
      lastName
      username
    }
  }
}
"""

LOGOUT = """
mutation Logout {
  logout { status }
}
"""

CHECKOUT = """
mutation Checkout($input: CheckoutInput!) {
  checkout(input: $input) {
    result
    redirect
    order {
      id
      databaseId
      orderNumber
      orderKey
      status
      date
      total
      subtotal
      totalTax
      shippingTotal
      paymentMethod
      paymentMethodTitle
      currency
      billing {""" + ADDRESS_FIELDS + """ email phone company }
      shipping {""" + ADDRESS_FIELDS + """ }
      lineItems {
        nodes {
          productId
          variationId
          quantity
          subtotal
          total
          product { node { name } }
          variation { node { name } }
        }
      }
    }
  }
}
"""

GET_PAYMENT_GATEWAYS = """
query GetAvailablePaymentGateways {
  paymentGateways {
    nodes { id title description }
  }
}
"""

GET_STRIPE_PAYMENT_INTENT = """
query GetStripePaymentIntent($stripePaymentMethod: StripePaymentMethodEnum!) {
  stripePaymentIntent(stripePaymentMethod: $stripePaymentMethod) {
    id
    amount
    currency
    clientSecret
    error
  }
}
"""
